"""
Доменные ошибки сервиса назначения ревьюверов.

Ненайденные сущности наследуются от ObjectDoesNotExist, нарушения
бизнес-правил от ValidationError с кодом ошибки, поэтому вьюхи
обрабатывают их так же, как ошибки самого Django.
"""
from django.core.exceptions import ObjectDoesNotExist, ValidationError


class NotFoundError(ObjectDoesNotExist):
    entity = 'object'

    def __init__(self, object_id):
        self.object_id = object_id
        super().__init__(f"{self.entity} '{object_id}' not found")


class UserNotFound(NotFoundError):
    entity = 'User'


class TeamNotFound(NotFoundError):
    entity = 'Team'


class PullRequestNotFound(NotFoundError):
    entity = 'PR'


class BusinessRuleError(ValidationError):
    error_code = 'VALIDATION_ERROR'
    default_message = 'business rule violated'

    def __init__(self, message=None):
        super().__init__(message or self.default_message, code=self.error_code)


class TeamAlreadyExists(BusinessRuleError):
    error_code = 'TEAM_EXISTS'
    default_message = 'team_name already exists'


class PullRequestAlreadyMerged(BusinessRuleError):
    error_code = 'PR_MERGED'
    default_message = 'cannot reassign on merged PR'


class ReviewerNotAssigned(BusinessRuleError):
    error_code = 'NOT_ASSIGNED'
    default_message = 'reviewer is not assigned to this PR'


class NoEligibleReviewers(BusinessRuleError):
    error_code = 'NO_CANDIDATE'
    default_message = 'no active replacement candidate in team'


class CascadeReassignmentError(Exception):
    """
    Каскадное переназначение завершилось, но часть PR обработать не удалось.
    Какие именно PR упали, видно только в логах.
    """

    def __init__(self, failed_count, total):
        self.failed_count = failed_count
        self.total = total
        super().__init__(f"reviewer reassignment failed for {failed_count} of {total} pull requests")
