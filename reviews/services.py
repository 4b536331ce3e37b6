import logging
import random

from django.db import transaction

from .exceptions import (
    CascadeReassignmentError,
    NoEligibleReviewers,
    PullRequestAlreadyMerged,
    ReviewerNotAssigned,
    TeamAlreadyExists,
)
from .models import MAX_REVIEWERS, PullRequest, Team, User
from .repository import Repository
from .selection import select_reviewers

logger = logging.getLogger(__name__)


class BaseService:
    """
    Общая часть сервисов: хранилище и источник случайности передаются явно,
    чтобы в тестах можно было подставить свои.
    """

    def __init__(self, repository: Repository = None, rng: random.Random = None):
        self.repository = repository or Repository()
        self.rng = rng or random.Random()


class TeamService(BaseService):
    """
    Сервис для управления командами и пользователями
    """

    @transaction.atomic
    def create_team_with_members(self, team_name: str, members_data: list) -> Team:
        """
        Создает команду вместе с новыми пользователями

        Raises:
            TeamAlreadyExists: Если команда с таким именем уже есть
        """
        if self.repository.team_exists(team_name):
            raise TeamAlreadyExists()

        team = self.repository.create_team(team_name)
        for member_data in members_data:
            self.repository.create_user(
                team,
                username=member_data['username'],
                is_active=member_data.get('is_active', True),
            )

        logger.info("Created team %s with %d members", team_name, len(members_data))
        return self.repository.get_team_by_name(team_name)

    def get_team_with_members(self, team_name: str) -> Team:
        return self.repository.get_team_by_name(team_name)


class UserService(BaseService):
    """
    Сервис для управления пользователями
    """

    @transaction.atomic
    def create_user(self, username: str, team_id, is_active: bool = True) -> User:
        team = self.repository.get_team(team_id)
        user = self.repository.create_user(team, username=username, is_active=is_active)
        logger.info("Created user %s in team %s", user.id, team.name)
        return user


class PullRequestService(BaseService):
    """
    Сервис для управления Pull Request'ами: создание с автоназначением,
    мерж и ручное переназначение ревьювера
    """

    @transaction.atomic
    def create_pull_request(self, title: str, author_id) -> PullRequest:
        author = self.repository.get_user(author_id)

        # Кандидаты: активные участники команды автора, кроме самого автора
        candidates = self.repository.list_active_team_users(author.team_id)
        reviewers = select_reviewers(candidates, exclude={author.id}, count=MAX_REVIEWERS, rng=self.rng)

        pr = self.repository.create_pull_request(title, author, reviewers)

        if len(reviewers) < MAX_REVIEWERS:
            logger.warning(
                "PR %s created with %d reviewer(s): not enough active teammates",
                pr.id, len(reviewers),
            )
        logger.info("Created PR %s by %s, reviewers %s", pr.id, author.id, pr.reviewer_ids)
        return pr

    @transaction.atomic
    def merge_pull_request(self, pr_id) -> PullRequest:
        pr = self.repository.lock_pull_request(pr_id)

        # Повторный мерж ничего не меняет
        if pr.is_merged:
            return pr

        pr = self.repository.mark_merged(pr)
        logger.info("Merged PR %s", pr.id)
        return pr

    @transaction.atomic
    def reassign_reviewer(self, pr_id, old_user_id) -> tuple:
        """
        Заменяет одного ревьювера на случайного активного коллегу автора.
        Второй ревьювер остается на своем месте.

        Returns:
            tuple: (PR, новый ревьювер)
        """
        pr = self.repository.lock_pull_request(pr_id)

        if pr.is_merged:
            raise PullRequestAlreadyMerged()

        current_reviewer_ids = pr.reviewer_ids
        if old_user_id not in current_reviewer_ids:
            raise ReviewerNotAssigned()

        candidates = self.repository.list_active_team_users(pr.author.team_id)
        picked = select_reviewers(
            candidates,
            exclude={pr.author_id, old_user_id, *current_reviewer_ids},
            count=1,
            rng=self.rng,
        )
        if not picked:
            raise NoEligibleReviewers()

        new_reviewer = picked[0]
        self.repository.save_reviewers(pr, [
            new_reviewer.id if reviewer_id == old_user_id else reviewer_id
            for reviewer_id in current_reviewer_ids
        ])

        logger.info("PR %s: reviewer %s replaced by %s", pr.id, old_user_id, new_reviewer.id)
        return pr, new_reviewer

    def get_reviewer_pull_requests(self, reviewer_id) -> list:
        return self.repository.list_pull_requests_by_reviewer(reviewer_id)


class DeactivationService(BaseService):
    """
    Деактивация пользователей с каскадным переназначением ревьюверов
    в открытых PR
    """

    def deactivate_user(self, user_id) -> dict:
        with transaction.atomic():
            user = self.repository.deactivate_user(user_id)
            pr_ids = self.repository.list_open_pull_request_ids_by_reviewers([user.id])

        logger.info("Deactivated user %s, open PRs to reassign: %d", user.id, len(pr_ids))
        summary = self._reassign_open_pull_requests(pr_ids, {user.id})
        summary['deactivated_users'] = 1
        return summary

    def mass_deactivate_team_users(self, team_id) -> dict:
        """
        Деактивирует всю команду одной транзакцией, затем переназначает
        ревьюверов во всех затронутых открытых PR. Кандидаты считаются уже
        после деактивации, поэтому деактивированные в этой же пачке не
        назначаются ни на один PR.
        """
        with transaction.atomic():
            team = self.repository.get_team(team_id)
            user_ids = self.repository.deactivate_team_users(team)
            pr_ids = self.repository.list_open_pull_request_ids_by_reviewers(user_ids)

        logger.info(
            "Deactivated %d users of team %s, open PRs to reassign: %d",
            len(user_ids), team.name, len(pr_ids),
        )
        summary = self._reassign_open_pull_requests(pr_ids, set(user_ids))
        summary['deactivated_users'] = len(user_ids)
        return summary

    def _reassign_open_pull_requests(self, pr_ids: list, deactivated_ids: set) -> dict:
        summary = {'processed_prs': 0, 'reassigned': 0, 'dropped': 0}
        failed = 0

        # Ошибка на одном PR не останавливает обработку остальных
        for pr_id in sorted(pr_ids):
            try:
                reassigned, dropped = self._reassign_pull_request(pr_id, deactivated_ids)
            except Exception:
                failed += 1
                logger.exception("Failed to reassign reviewers for PR %s", pr_id)
                continue
            summary['processed_prs'] += 1
            summary['reassigned'] += reassigned
            summary['dropped'] += dropped

        if failed:
            raise CascadeReassignmentError(failed, len(pr_ids))

        logger.info(
            "Cascade done: %d PRs, %d reviewers reassigned, %d slots dropped",
            summary['processed_prs'], summary['reassigned'], summary['dropped'],
        )
        return summary

    def _reassign_pull_request(self, pr_id, deactivated_ids: set) -> tuple:
        with transaction.atomic():
            pr = self.repository.lock_pull_request(pr_id)

            # PR могли смержить между выборкой и блокировкой
            if pr.is_merged:
                return 0, 0

            current_reviewer_ids = pr.reviewer_ids
            if not any(reviewer_id in deactivated_ids for reviewer_id in current_reviewer_ids):
                return 0, 0

            candidates = self.repository.list_active_team_users(pr.author.team_id)
            excluded = {pr.author_id, *current_reviewer_ids}

            new_reviewer_ids = []
            reassigned = dropped = 0
            for reviewer_id in current_reviewer_ids:
                if reviewer_id not in deactivated_ids:
                    new_reviewer_ids.append(reviewer_id)
                    continue

                picked = select_reviewers(candidates, exclude=excluded, count=1, rng=self.rng)
                if picked:
                    new_reviewer_ids.append(picked[0].id)
                    excluded.add(picked[0].id)
                    reassigned += 1
                else:
                    dropped += 1

            self.repository.save_reviewers(pr, new_reviewer_ids)

        if dropped:
            logger.warning("PR %s: %d reviewer slot(s) dropped, no active candidates", pr_id, dropped)
        return reassigned, dropped


class StatsService(BaseService):
    """
    Сервис для сбора статистики
    """

    def get_review_stats(self) -> dict:
        """
        Returns:
            dict: Статистика по пользователям и PR
        """
        return {
            'user_review_stats': self.repository.reviewer_assignment_counts(),
            'pr_reviewer_stats': self.repository.pull_request_reviewer_counts(),
        }
