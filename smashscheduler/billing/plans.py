"""
Plan tiers and the feature limits each one grants.

Pure lookups with no database access. Feature-gated code elsewhere asks these
helpers instead of comparing plan names itself. ``None`` means unlimited.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from django.db import models
from django.utils import timezone


class PlanTier(models.TextChoices):
    FREE = "free", "Free"
    PRO = "pro", "Pro"


class AnalyticsLevel(models.TextChoices):
    MINIMAL = "minimal", "Minimal"
    ADVANCED = "advanced", "Advanced"


RESTRICTIONS: Dict[str, Dict[str, Any]] = {
    PlanTier.FREE: {
        "club_count": 1,
        "player_count": 16,
        "session_scheduling_days": 7,
        "session_retention": 3,
        "organisers": False,
        "guest_players": False,
        "custom_matchmaking_profiles": False,
        "analytics": AnalyticsLevel.MINIMAL,
        "csv_export": False,
        "branding": False,
    },
    PlanTier.PRO: {
        "club_count": None,
        "player_count": None,
        "session_scheduling_days": None,
        "session_retention": None,
        "organisers": True,
        "guest_players": True,
        "custom_matchmaking_profiles": True,
        "analytics": AnalyticsLevel.ADVANCED,
        "csv_export": True,
        "branding": True,
    },
}


def get_limits(plan_type: Optional[str]) -> Dict[str, Any]:
    """Get the limits for a plan tier. Unknown or missing tiers get free limits."""
    if plan_type == PlanTier.PRO:
        return RESTRICTIONS[PlanTier.PRO]
    return RESTRICTIONS[PlanTier.FREE]


def is_pro_plan(plan_type: Optional[str]) -> bool:
    return plan_type == PlanTier.PRO


def is_free_plan(plan_type: Optional[str]) -> bool:
    return not plan_type or plan_type == PlanTier.FREE


def _within(current: int, maximum: Optional[int]) -> bool:
    return maximum is None or current < maximum


def can_create_club(current_club_count: int, plan_type: Optional[str]) -> bool:
    return _within(current_club_count, get_limits(plan_type)["club_count"])


def can_add_player(current_player_count: int, plan_type: Optional[str]) -> bool:
    return _within(current_player_count, get_limits(plan_type)["player_count"])


def can_schedule_session(
    scheduled_for: datetime,
    plan_type: Optional[str],
    now: Optional[datetime] = None,
) -> bool:
    """Check a session date against the plan's scheduling horizon.

    Days are counted with ceiling semantics, so a session 6 days and 1 hour
    away counts as 7 days out.
    """
    max_days = get_limits(plan_type)["session_scheduling_days"]
    if max_days is None:
        return True

    now = now or timezone.now()
    seconds = (scheduled_for - now).total_seconds()
    days_until = -int(-seconds // 86400)
    return days_until <= max_days


def can_use_organisers(plan_type: Optional[str]) -> bool:
    return get_limits(plan_type)["organisers"]


def can_use_guest_players(plan_type: Optional[str]) -> bool:
    return get_limits(plan_type)["guest_players"]


def can_use_custom_matchmaking_profiles(plan_type: Optional[str]) -> bool:
    return get_limits(plan_type)["custom_matchmaking_profiles"]


def can_export_csv(plan_type: Optional[str]) -> bool:
    return get_limits(plan_type)["csv_export"]


def can_use_branding(plan_type: Optional[str]) -> bool:
    return get_limits(plan_type)["branding"]


def get_analytics_level(plan_type: Optional[str]) -> str:
    return get_limits(plan_type)["analytics"]
