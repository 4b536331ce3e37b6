"""
Хранилище команд, пользователей и PR поверх Django ORM.

Сервисы работают только через Repository, поэтому в тестах его можно
подменить. Фильтр "только активные" есть ровно в одном месте:
list_active_team_users. Чтение для изменения (PR и кандидаты в ревьюверы)
идет через select_for_update.
"""
from django.db import IntegrityError, models, transaction
from django.db.models import Count

from .exceptions import PullRequestNotFound, TeamAlreadyExists, TeamNotFound, UserNotFound
from .models import PullRequest, ReviewerAssignment, Team, User


class Repository:

    # --- Team ---

    def create_team(self, name: str) -> Team:
        # Параллельный запрос мог создать команду после проверки team_exists
        try:
            with transaction.atomic():
                return Team.objects.create(name=name)
        except IntegrityError:
            raise TeamAlreadyExists()

    def team_exists(self, name: str) -> bool:
        return Team.objects.filter(name=name).exists()

    def get_team(self, team_id) -> Team:
        try:
            return Team.objects.get(id=team_id)
        except Team.DoesNotExist:
            raise TeamNotFound(team_id)

    def get_team_by_name(self, name: str) -> Team:
        try:
            return Team.objects.prefetch_related('members').get(name=name)
        except Team.DoesNotExist:
            raise TeamNotFound(name)

    # --- User ---

    def create_user(self, team: Team, username: str, is_active: bool = True) -> User:
        return User.objects.create(team=team, username=username, is_active=is_active)

    def get_user(self, user_id) -> User:
        try:
            return User.objects.select_related('team').get(id=user_id)
        except User.DoesNotExist:
            raise UserNotFound(user_id)

    def deactivate_user(self, user_id) -> User:
        user = self.get_user(user_id)
        if user.is_active:
            User.objects.filter(id=user.id).update(is_active=False)
            user.is_active = False
        return user

    def deactivate_team_users(self, team: Team) -> list:
        """Деактивирует всех участников команды, возвращает их ID"""
        user_ids = list(User.objects.filter(team=team).order_by('id').values_list('id', flat=True))
        User.objects.filter(id__in=user_ids, is_active=True).update(is_active=False)
        return user_ids

    def list_active_team_users(self, team_id) -> list:
        """
        Активные участники команды под блокировкой строк до конца транзакции:
        параллельная деактивация ждет, пока назначение закоммитится, и затем
        видит новый PR. Вызывать только внутри transaction.atomic().
        """
        return list(
            User.objects
            .select_for_update()
            .filter(team_id=team_id, is_active=True)
            .order_by('id')
        )

    # --- Pull Request ---

    def create_pull_request(self, title: str, author: User, reviewers: list) -> PullRequest:
        pr = PullRequest.objects.create(title=title, author=author)
        self.save_reviewers(pr, [reviewer.id for reviewer in reviewers])
        return self.get_pull_request(pr.id)

    def get_pull_request(self, pr_id) -> PullRequest:
        try:
            return (
                PullRequest.objects
                .select_related('author')
                .prefetch_related('assignments')
                .get(id=pr_id)
            )
        except PullRequest.DoesNotExist:
            raise PullRequestNotFound(pr_id)

    def lock_pull_request(self, pr_id) -> PullRequest:
        """
        Берет строку PR под блокировку до конца текущей транзакции.
        Вызывать только внутри transaction.atomic().
        """
        try:
            return (
                PullRequest.objects
                .select_for_update(of=('self',))
                .select_related('author')
                .prefetch_related('assignments')
                .get(id=pr_id)
            )
        except PullRequest.DoesNotExist:
            raise PullRequestNotFound(pr_id)

    def save_reviewers(self, pr: PullRequest, reviewer_ids: list):
        """Перезаписывает ревьюверов PR, позиция в списке становится слотом"""
        ReviewerAssignment.objects.filter(pull_request=pr).delete()
        ReviewerAssignment.objects.bulk_create([
            ReviewerAssignment(pull_request=pr, reviewer_id=reviewer_id, slot=slot)
            for slot, reviewer_id in enumerate(reviewer_ids)
        ])
        # Сбрасываем prefetch, чтобы pr.reviewer_ids читал новые данные
        if hasattr(pr, '_prefetched_objects_cache'):
            pr._prefetched_objects_cache.pop('assignments', None)

    def mark_merged(self, pr: PullRequest) -> PullRequest:
        pr.status = PullRequest.Status.MERGED
        pr.save(update_fields=['status', 'merged_at'])
        return pr

    def list_pull_requests_by_reviewer(self, reviewer_id) -> list:
        return list(
            PullRequest.objects
            .filter(assignments__reviewer_id=reviewer_id)
            .select_related('author')
            .order_by('id')
        )

    def list_open_pull_request_ids_by_reviewers(self, reviewer_ids) -> list:
        return list(
            PullRequest.objects
            .filter(status=PullRequest.Status.OPEN, assignments__reviewer_id__in=list(reviewer_ids))
            .values_list('id', flat=True)
            .distinct()
            .order_by('id')
        )

    # --- Statistic ---

    def reviewer_assignment_counts(self) -> list:
        return list(
            User.objects
            .filter(assigned_prs__isnull=False)
            .annotate(
                prs_reviewed=Count('assigned_prs'),
                open_prs_reviewed=Count('assigned_prs', filter=models.Q(assigned_prs__status='OPEN')),
                merged_prs_reviewed=Count('assigned_prs', filter=models.Q(assigned_prs__status='MERGED'))
            )
            .values('id', 'username', 'prs_reviewed', 'open_prs_reviewed', 'merged_prs_reviewed')
            .order_by('-prs_reviewed', 'id')
        )

    def pull_request_reviewer_counts(self) -> list:
        return list(
            PullRequest.objects
            .annotate(
                reviewers_count=Count('assignments'),
                team_name=models.F('author__team__name')
            )
            .values(
                'id', 'title', 'status', 'team_name',
                'reviewers_count', 'created_at', 'merged_at'
            )
            .order_by('-created_at', '-id')
        )
