from django.db import models
from django.utils import timezone

# Максимальное число ревьюверов на один PR
MAX_REVIEWERS = 2


class Team(models.Model):
    name = models.CharField(max_length=100, unique=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return self.name

    class Meta:
        db_table = 'teams'


class User(models.Model):
    username = models.CharField(max_length=100)
    team = models.ForeignKey(Team, on_delete=models.CASCADE, related_name='members')
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.username} ({self.id})"

    class Meta:
        db_table = 'users'
        ordering = ['id']
        indexes = [
            models.Index(fields=['team', 'is_active'], name='users_team_active_idx'),
        ]


class PullRequest(models.Model):
    class Status(models.TextChoices):
        OPEN = 'OPEN', 'Open'
        MERGED = 'MERGED', 'Merged'

    title = models.CharField(max_length=200)
    author = models.ForeignKey(User, on_delete=models.CASCADE, related_name='authored_prs')
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.OPEN)
    reviewers = models.ManyToManyField(
        User,
        through='ReviewerAssignment',
        related_name='assigned_prs',
        blank=True,
    )
    created_at = models.DateTimeField(auto_now_add=True)
    merged_at = models.DateTimeField(null=True, blank=True)

    @property
    def is_merged(self):
        return self.status == self.Status.MERGED

    @property
    def reviewer_ids(self):
        """ID ревьюверов в порядке слотов"""
        return [a.reviewer_id for a in self.assignments.all()]

    def clean(self):
        if self.status == self.Status.MERGED and not self.merged_at:
            self.merged_at = timezone.now()

    def save(self, *args, **kwargs):
        self.clean()
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.title} ({self.id})"

    class Meta:
        db_table = 'pull_requests'


class ReviewerAssignment(models.Model):
    """
    Назначение ревьювера на PR. Слот хранит позицию ревьювера,
    чтобы при переназначении второй ревьювер оставался на своем месте.
    """
    pull_request = models.ForeignKey(PullRequest, on_delete=models.CASCADE, related_name='assignments')
    reviewer = models.ForeignKey(User, on_delete=models.CASCADE, related_name='review_assignments')
    slot = models.PositiveSmallIntegerField()

    def __str__(self):
        return f"{self.pull_request_id}#{self.slot} -> {self.reviewer_id}"

    class Meta:
        db_table = 'pr_reviewers'
        ordering = ['slot']
        constraints = [
            models.UniqueConstraint(fields=['pull_request', 'reviewer'], name='uniq_pr_reviewer'),
            models.UniqueConstraint(fields=['pull_request', 'slot'], name='uniq_pr_slot'),
            models.CheckConstraint(condition=models.Q(slot__lt=MAX_REVIEWERS), name='pr_reviewer_slot_range'),
        ]
