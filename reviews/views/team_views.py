from rest_framework import status
from rest_framework.decorators import api_view
from rest_framework.response import Response
from django.core.exceptions import ObjectDoesNotExist, ValidationError

from ..exceptions import CascadeReassignmentError
from ..models import Team, User
from ..services import DeactivationService, TeamService
from ..serializers import TeamSerializer
from .common import (
    error_response,
    field_max_length,
    is_valid_text,
    parse_id,
    server_error,
    validation_error,
)

team_service = TeamService()
deactivation_service = DeactivationService()


@api_view(['POST'])
def team_add(request):
    """POST /team/add - Создать команду с участниками"""
    try:
        team_name = request.data.get('team_name')
        members_data = request.data.get('members', [])

        if not team_name:
            return validation_error('team_name is required')

        if not is_valid_text(team_name, field_max_length(Team, 'name')):
            return validation_error('team_name must be a string of at most 100 characters')

        if not isinstance(members_data, list):
            return validation_error('members must be a list')

        username_max_length = field_max_length(User, 'username')
        for i, member in enumerate(members_data):
            if not isinstance(member, dict) or not member.get('username'):
                return validation_error(f'Member at index {i} is missing required fields')
            if not is_valid_text(member['username'], username_max_length):
                return validation_error(f'Member at index {i} has invalid username')
            if 'is_active' in member and not isinstance(member['is_active'], bool):
                return validation_error(f'Member at index {i} has invalid is_active')

        team = team_service.create_team_with_members(team_name, members_data)
        serializer = TeamSerializer(team)

        return Response({
            'team': serializer.data
        }, status=status.HTTP_201_CREATED)

    except ValidationError as e:
        return error_response(e.code, e.message, status.HTTP_409_CONFLICT)
    except Exception as e:
        return server_error(e)


@api_view(['GET'])
def team_get(request):
    """GET /team/get - Получить команду с участниками"""
    try:
        team_name = request.query_params.get('team_name')

        if not team_name:
            return validation_error('team_name parameter is required')

        team = team_service.get_team_with_members(team_name)
        serializer = TeamSerializer(team)

        return Response(serializer.data)

    except ObjectDoesNotExist:
        return error_response('NOT_FOUND', 'Team not found', status.HTTP_404_NOT_FOUND)
    except Exception as e:
        return server_error(e)


@api_view(['POST'])
def team_deactivate(request):
    """POST /team/deactivate - Деактивировать всю команду с переназначением ревьюверов"""
    try:
        team_id = parse_id(request.data.get('team_id'))

        if team_id is None:
            return validation_error('team_id is required and must be a positive integer')

        deactivation_service.mass_deactivate_team_users(team_id)

        return Response(status=status.HTTP_204_NO_CONTENT)

    except ObjectDoesNotExist:
        return error_response('NOT_FOUND', 'Team not found', status.HTTP_404_NOT_FOUND)
    except CascadeReassignmentError as e:
        return error_response('CASCADE_FAILED', str(e), status.HTTP_500_INTERNAL_SERVER_ERROR)
    except Exception as e:
        return server_error(e)
