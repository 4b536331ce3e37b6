import random

from django.db import DatabaseError
from django.test import TestCase

from reviews.exceptions import CascadeReassignmentError, TeamNotFound, UserNotFound
from reviews.models import Team, User, PullRequest
from reviews.repository import Repository
from reviews.services import DeactivationService, PullRequestService


class FailingRepository(Repository):
    """Хранилище, которое падает при блокировке заданных PR"""

    def __init__(self, failing_pr_ids):
        self.failing_pr_ids = set(failing_pr_ids)

    def lock_pull_request(self, pr_id):
        if pr_id in self.failing_pr_ids:
            raise DatabaseError("connection lost")
        return super().lock_pull_request(pr_id)


class DeactivateUserTest(TestCase):
    def setUp(self):
        self.team = Team.objects.create(name="backend")

        self.author = User.objects.create(username="Author", team=self.team)
        self.reviewer1 = User.objects.create(username="Reviewer 1", team=self.team)
        self.reviewer2 = User.objects.create(username="Reviewer 2", team=self.team)
        self.spare = User.objects.create(username="Spare", team=self.team)

        self.service = DeactivationService(rng=random.Random(0))

    def _make_pr(self, reviewers, author=None, status=PullRequest.Status.OPEN):
        pr = PullRequest.objects.create(title="Test PR", author=author or self.author, status=status)
        Repository().save_reviewers(pr, [reviewer.id for reviewer in reviewers])
        return pr

    def _reviewers(self, pr):
        return PullRequest.objects.get(id=pr.id).reviewer_ids

    def test_deactivate_replaces_reviewer(self):
        """Деактивированный ревьювер заменяется на свободного коллегу в том же слоте"""
        pr = self._make_pr([self.reviewer1, self.reviewer2])

        summary = self.service.deactivate_user(self.reviewer1.id)

        self.reviewer1.refresh_from_db()
        self.assertFalse(self.reviewer1.is_active)
        self.assertEqual(self._reviewers(pr), [self.spare.id, self.reviewer2.id])
        self.assertEqual(summary, {
            'deactivated_users': 1, 'processed_prs': 1, 'reassigned': 1, 'dropped': 0,
        })

    def test_deactivate_drops_slot_without_candidates(self):
        """Нет кандидатов: слот освобождается, неактивный ревьювер не остается"""
        User.objects.filter(id=self.spare.id).update(is_active=False)
        pr = self._make_pr([self.reviewer1, self.reviewer2])

        summary = self.service.deactivate_user(self.reviewer1.id)

        self.assertEqual(self._reviewers(pr), [self.reviewer2.id])
        self.assertEqual(summary['dropped'], 1)

    def test_both_reviewers_deactivated_leaves_spare(self):
        """Команда из 4: оба ревьювера деактивированы, остается только запасной"""
        pr = self._make_pr([self.reviewer1, self.reviewer2])

        self.service.deactivate_user(self.reviewer1.id)
        self.service.deactivate_user(self.reviewer2.id)

        self.assertEqual(self._reviewers(pr), [self.spare.id])

    def test_merged_pr_untouched(self):
        """Смерженный PR не меняется"""
        merged = self._make_pr([self.reviewer1, self.reviewer2], status=PullRequest.Status.MERGED)

        summary = self.service.deactivate_user(self.reviewer1.id)

        self.assertEqual(self._reviewers(merged), [self.reviewer1.id, self.reviewer2.id])
        self.assertEqual(summary['processed_prs'], 0)

    def test_deactivate_idempotent(self):
        """Повторная деактивация не ошибка"""
        pr = self._make_pr([self.reviewer1])

        self.service.deactivate_user(self.reviewer1.id)
        summary = self.service.deactivate_user(self.reviewer1.id)

        self.assertEqual(summary['processed_prs'], 0)
        self.assertNotIn(self.reviewer1.id, self._reviewers(pr))

    def test_deactivate_author_keeps_reviewers(self):
        pr = self._make_pr([self.reviewer1, self.reviewer2])

        self.service.deactivate_user(self.author.id)

        self.assertEqual(self._reviewers(pr), [self.reviewer1.id, self.reviewer2.id])

    def test_deactivate_user_not_found(self):
        with self.assertRaises(UserNotFound):
            self.service.deactivate_user(999999)

    def test_no_open_pr_keeps_deactivated_reviewer(self):
        """После деактивации пользователь не числится ревьювером ни в одном открытом PR"""
        for i in range(4):
            User.objects.create(username=f"Extra {i}", team=self.team)

        pull_request_service = PullRequestService(rng=random.Random(1))
        prs = [pull_request_service.create_pull_request(f"PR {i}", self.author.id) for i in range(10)]
        target = next(pr.reviewer_ids[0] for pr in prs if pr.reviewer_ids)

        self.service.deactivate_user(target)

        for pr in PullRequest.objects.filter(status=PullRequest.Status.OPEN):
            self.assertNotIn(target, pr.reviewer_ids)
            self.assertNotIn(self.author.id, pr.reviewer_ids)
            self.assertEqual(len(pr.reviewer_ids), 2)
            self.assertEqual(len(set(pr.reviewer_ids)), 2)

    def test_failures_aggregated(self):
        """Ошибка на одном PR не мешает обработать остальные, но возвращается вызывающему"""
        broken = self._make_pr([self.reviewer1])
        healthy = self._make_pr([self.reviewer1, self.reviewer2])
        service = DeactivationService(repository=FailingRepository([broken.id]), rng=random.Random(0))

        with self.assertRaises(CascadeReassignmentError) as context:
            service.deactivate_user(self.reviewer1.id)

        self.assertEqual(context.exception.failed_count, 1)
        self.assertEqual(context.exception.total, 2)

        self.reviewer1.refresh_from_db()
        self.assertFalse(self.reviewer1.is_active)
        self.assertEqual(self._reviewers(broken), [self.reviewer1.id])
        self.assertEqual(self._reviewers(healthy), [self.spare.id, self.reviewer2.id])


class MassDeactivateTeamUsersTest(TestCase):
    def setUp(self):
        self.team_a = Team.objects.create(name="alpha")
        self.team_b = Team.objects.create(name="beta")

        self.a_author = User.objects.create(username="A1 Author", team=self.team_a)
        self.a_reviewer1 = User.objects.create(username="A2 Reviewer", team=self.team_a)
        self.a_reviewer2 = User.objects.create(username="A3 Reviewer", team=self.team_a)
        self.a_spare = User.objects.create(username="A4 Spare", team=self.team_a)

        self.b_author = User.objects.create(username="B1 Author", team=self.team_b)
        self.b_reviewer1 = User.objects.create(username="B2 Reviewer", team=self.team_b)
        self.b_reviewer2 = User.objects.create(username="B3 Reviewer", team=self.team_b)

        self.service = DeactivationService(rng=random.Random(0))

    def _make_pr(self, author, reviewers, status=PullRequest.Status.OPEN):
        pr = PullRequest.objects.create(title="Test PR", author=author, status=status)
        Repository().save_reviewers(pr, [reviewer.id for reviewer in reviewers])
        return pr

    def _reviewers(self, pr):
        return PullRequest.objects.get(id=pr.id).reviewer_ids

    def test_whole_team_deactivated(self):
        pr_a = self._make_pr(self.a_author, [self.a_reviewer1, self.a_reviewer2])
        pr_b = self._make_pr(self.b_author, [self.b_reviewer1, self.b_reviewer2])

        summary = self.service.mass_deactivate_team_users(self.team_a.id)

        self.assertFalse(User.objects.filter(team=self.team_a, is_active=True).exists())
        self.assertEqual(User.objects.filter(team=self.team_b, is_active=True).count(), 3)

        # Все в команде неактивны, заменить некем
        self.assertEqual(self._reviewers(pr_a), [])
        self.assertEqual(self._reviewers(pr_b), [self.b_reviewer1.id, self.b_reviewer2.id])
        self.assertEqual(summary, {
            'deactivated_users': 4, 'processed_prs': 1, 'reassigned': 0, 'dropped': 2,
        })

    def test_no_inactive_reviewers_remain(self):
        """После массовой деактивации у открытых PR команды нет неактивных ревьюверов"""
        for i in range(6):
            self._make_pr(self.a_author, [self.a_reviewer1, self.a_spare])
            self._make_pr(self.a_spare, [self.a_reviewer2, self.a_author])

        self.service.mass_deactivate_team_users(self.team_a.id)

        for pr in PullRequest.objects.filter(status=PullRequest.Status.OPEN, author__team=self.team_a):
            active = set(User.objects.filter(id__in=pr.reviewer_ids, is_active=True).values_list('id', flat=True))
            self.assertEqual(set(pr.reviewer_ids), active)

    def test_replacement_from_author_team(self):
        """
        Ревьюверы перешли в другую команду после назначения: при ее деактивации
        замена ищется в команде автора, а слотов остается столько, сколько нашлось кандидатов
        """
        b_spare = User.objects.create(username="B4 Spare", team=self.team_b)
        User.objects.filter(id=b_spare.id).update(is_active=False)
        pr = self._make_pr(self.b_author, [self.a_reviewer1, self.a_reviewer2])

        summary = self.service.mass_deactivate_team_users(self.team_a.id)

        reviewers = self._reviewers(pr)
        self.assertEqual(len(reviewers), 2)
        self.assertCountEqual(reviewers, [self.b_reviewer1.id, self.b_reviewer2.id])
        self.assertEqual(summary['reassigned'], 2)

    def test_partial_replacement(self):
        User.objects.filter(id=self.b_reviewer2.id).update(is_active=False)
        pr = self._make_pr(self.b_author, [self.a_reviewer1, self.a_reviewer2])

        self.service.mass_deactivate_team_users(self.team_a.id)

        self.assertEqual(self._reviewers(pr), [self.b_reviewer1.id])

    def test_merged_prs_untouched(self):
        merged = self._make_pr(self.a_author, [self.a_reviewer1], status=PullRequest.Status.MERGED)

        self.service.mass_deactivate_team_users(self.team_a.id)

        self.assertEqual(self._reviewers(merged), [self.a_reviewer1.id])

    def test_repeated_mass_deactivation(self):
        self._make_pr(self.a_author, [self.a_reviewer1])

        self.service.mass_deactivate_team_users(self.team_a.id)
        summary = self.service.mass_deactivate_team_users(self.team_a.id)

        self.assertEqual(summary['processed_prs'], 0)

    def test_team_not_found(self):
        with self.assertRaises(TeamNotFound):
            self.service.mass_deactivate_team_users(999999)

        self.assertEqual(User.objects.filter(is_active=False).count(), 0)

    def test_failures_aggregated_after_deactivation(self):
        """Деактивация применяется целиком даже если часть PR не обработалась"""
        broken = self._make_pr(self.a_author, [self.a_reviewer1])
        User.objects.filter(id=self.b_reviewer2.id).update(team=self.team_a)
        healthy = self._make_pr(self.b_author, [self.b_reviewer1, self.b_reviewer2])
        service = DeactivationService(repository=FailingRepository([broken.id]), rng=random.Random(0))

        with self.assertRaises(CascadeReassignmentError):
            service.mass_deactivate_team_users(self.team_a.id)

        self.assertFalse(User.objects.filter(team=self.team_a, is_active=True).exists())
        self.assertEqual(self._reviewers(healthy), [self.b_reviewer1.id])
