import uuid

from django.db import models
from django.utils.text import slugify

from smashscheduler.users.models import User


class Club(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    slug = models.SlugField(max_length=255, unique=True, blank=True)

    # Track who created the club
    created_by = models.ForeignKey(
        User,
        on_delete=models.PROTECT,  # Don't delete club if creator is deleted
        related_name="created_clubs",
        null=True,
        blank=True,
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        """Auto-generate slug if not provided"""
        if not self.slug:
            self.slug = self.unique_slug_for(self.name)

        super().save(*args, **kwargs)

    @classmethod
    def unique_slug_for(cls, name):
        """Slugify ``name`` and suffix -1, -2, ... until no other club uses it."""
        original_slug = slugify(name)[:240] or "club"
        slug = original_slug
        counter = 1
        while cls.objects.filter(slug=slug).exists():
            slug = f"{original_slug}-{counter}"
            counter += 1
        return slug

    def is_organiser(self, user) -> bool:
        if user is None or not getattr(user, "is_authenticated", False):
            return False
        return self.organisers.filter(user=user).exists()


class ClubOrganiser(models.Model):
    """Management rights of a user over a club."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name="organised_clubs")
    club = models.ForeignKey(Club, on_delete=models.CASCADE, related_name="organisers")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = ["user", "club"]
        indexes = [
            models.Index(fields=["user"], name="clubs_clubo_user_id_5e1f0b_idx"),
            models.Index(fields=["club"], name="clubs_clubo_club_id_9a3c2d_idx"),
        ]

    def __str__(self):
        return f"{self.user.username} - {self.club.name}"
