from rest_framework import status
from rest_framework.decorators import api_view
from rest_framework.response import Response
from django.core.exceptions import ObjectDoesNotExist

from ..exceptions import CascadeReassignmentError
from ..models import User
from ..services import DeactivationService, PullRequestService, UserService
from ..serializers import UserSerializer, PullRequestShortSerializer
from .common import (
    error_response,
    field_max_length,
    is_valid_text,
    parse_id,
    server_error,
    validation_error,
)

user_service = UserService()
deactivation_service = DeactivationService()
pull_request_service = PullRequestService()


@api_view(['POST'])
def user_add(request):
    """POST /users/add - Добавить пользователя в команду"""
    try:
        username = request.data.get('username')
        team_id = parse_id(request.data.get('team_id'))
        is_active = request.data.get('is_active', True)

        if not username or team_id is None:
            return validation_error('username and team_id are required')

        if not is_valid_text(username, field_max_length(User, 'username')):
            return validation_error('username must be a string of at most 100 characters')

        if not isinstance(is_active, bool):
            return validation_error('is_active must be a boolean')

        user = user_service.create_user(username, team_id, is_active)
        serializer = UserSerializer(user)

        return Response({
            'user': serializer.data
        }, status=status.HTTP_201_CREATED)

    except ObjectDoesNotExist:
        return error_response('NOT_FOUND', 'Team not found', status.HTTP_404_NOT_FOUND)
    except Exception as e:
        return server_error(e)


@api_view(['POST'])
def user_deactivate(request):
    """POST /users/deactivate - Деактивировать пользователя и переназначить его ревью"""
    try:
        user_id = parse_id(request.data.get('user_id'))

        if user_id is None:
            return validation_error('user_id is required and must be a positive integer')

        deactivation_service.deactivate_user(user_id)

        return Response(status=status.HTTP_204_NO_CONTENT)

    except ObjectDoesNotExist:
        return error_response('NOT_FOUND', 'User not found', status.HTTP_404_NOT_FOUND)
    except CascadeReassignmentError as e:
        return error_response('CASCADE_FAILED', str(e), status.HTTP_500_INTERNAL_SERVER_ERROR)
    except Exception as e:
        return server_error(e)


@api_view(['GET'])
def users_get_review(request):
    """GET /users/getReview - Получить PR'ы, где пользователь назначен ревьювером"""
    try:
        user_id = parse_id(request.query_params.get('user_id'))

        if user_id is None:
            return validation_error('user_id parameter is required')

        assigned_prs = pull_request_service.get_reviewer_pull_requests(user_id)
        serializer = PullRequestShortSerializer(assigned_prs, many=True)

        return Response({
            'user_id': user_id,
            'pull_requests': serializer.data
        })

    except Exception as e:
        return server_error(e)
