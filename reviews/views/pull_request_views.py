from rest_framework import status
from rest_framework.decorators import api_view
from rest_framework.response import Response
from django.core.exceptions import ObjectDoesNotExist, ValidationError

from ..models import PullRequest
from ..services import PullRequestService
from ..serializers import PullRequestSerializer
from .common import (
    error_response,
    field_max_length,
    is_valid_text,
    parse_id,
    server_error,
    validation_error,
)

pull_request_service = PullRequestService()


@api_view(['POST'])
def pullrequest_create(request):
    """POST /pullRequest/create - Создать PR с автоназначением ревьюверов"""
    try:
        pr_name = request.data.get('pull_request_name')
        author_id = parse_id(request.data.get('author_id'))

        if not pr_name or author_id is None:
            return validation_error('pull_request_name and author_id are required')

        if not is_valid_text(pr_name, field_max_length(PullRequest, 'title')):
            return validation_error('pull_request_name must be a string of at most 200 characters')

        pr = pull_request_service.create_pull_request(pr_name, author_id)
        serializer = PullRequestSerializer(pr)

        return Response({
            'pr': serializer.data
        }, status=status.HTTP_201_CREATED)

    except ObjectDoesNotExist:
        return error_response('NOT_FOUND', 'Author not found', status.HTTP_404_NOT_FOUND)
    except Exception as e:
        return server_error(e)


@api_view(['POST'])
def pullrequest_merge(request):
    """POST /pullRequest/merge - Пометить PR как MERGED"""
    try:
        pr_id = parse_id(request.data.get('pull_request_id'))

        if pr_id is None:
            return validation_error('pull_request_id is required')

        pr = pull_request_service.merge_pull_request(pr_id)
        serializer = PullRequestSerializer(pr)

        return Response({
            'pr': serializer.data
        })

    except ObjectDoesNotExist:
        return error_response('NOT_FOUND', 'PR not found', status.HTTP_404_NOT_FOUND)
    except Exception as e:
        return server_error(e)


@api_view(['POST'])
def pullrequest_reassign(request):
    """POST /pullRequest/reassign - Переназначить ревьювера"""
    try:
        pr_id = parse_id(request.data.get('pull_request_id'))
        old_user_id = parse_id(request.data.get('old_user_id'))

        if pr_id is None or old_user_id is None:
            return validation_error('pull_request_id and old_user_id are required')

        pr, new_reviewer = pull_request_service.reassign_reviewer(pr_id, old_user_id)
        serializer = PullRequestSerializer(pr)

        return Response({
            'pr': serializer.data,
            'replaced_by': new_reviewer.id
        })

    except ObjectDoesNotExist:
        return error_response('NOT_FOUND', 'PR not found', status.HTTP_404_NOT_FOUND)
    except ValidationError as e:
        return error_response(e.code, e.message, status.HTTP_409_CONFLICT)
    except Exception as e:
        return server_error(e)
