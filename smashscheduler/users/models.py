from django.contrib.auth.models import AbstractUser
from django.db.models import CharField
from django.utils.translation import gettext_lazy as _


class User(AbstractUser):
    """
    Default custom user model for SmashScheduler.
    Organisers sign in with this account; club ownership is recorded through
    clubs.ClubOrganiser rather than on the user itself.
    """

    # First and last name do not cover name patterns around the globe
    name = CharField(_("Name of User"), blank=True, max_length=255)
    first_name = None  # type: ignore[assignment]
    last_name = None  # type: ignore[assignment]

    def get_display_name(self) -> str:
        return self.name or self.username
