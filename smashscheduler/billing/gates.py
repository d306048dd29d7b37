"""
Read-side access checks over committed subscription rows.

A user passes the gate for a club when they organise it and the club's
subscription is active or trialling. Nothing here writes or locks.
"""

from functools import wraps

from django.contrib.auth.decorators import login_required
from django.http import HttpResponseRedirect

from smashscheduler.clubs.models import ClubOrganiser

from .models import Subscription

ONBOARDING_URL = "/onboarding"
PRICING_URL = "/pricing"


def organised_club_ids(user):
    if user is None or not user.is_authenticated:
        return set()
    return set(ClubOrganiser.objects.filter(user=user).values_list("club_id", flat=True))


def active_club_ids(user):
    """Ids of clubs the user organises that hold an active or trialling subscription."""
    if user is None or not user.is_authenticated:
        return set()
    return set(
        Subscription.objects.active_like()
        .organised_by(user)
        .values_list("club_id", flat=True)
    )


def get_club_subscriptions(user):
    """The current subscription of every club the user organises, by club name."""
    if user is None or not user.is_authenticated:
        return []

    result = []
    memberships = ClubOrganiser.objects.filter(user=user).select_related("club").order_by("club__name")
    for membership in memberships:
        subscription = Subscription.objects.current_for_club(membership.club)
        result.append((membership.club, subscription))
    return result


def get_club_subscription(club):
    return Subscription.objects.current_for_club(club)


def subscription_gate_required(view_func):
    """
    Let a request through only when the user has at least one active club.

    Users without any club are sent to onboarding, users whose clubs have no
    active subscription to pricing. Passing requests carry
    ``request.active_club_ids``.
    """

    @wraps(view_func)
    @login_required
    def wrapper(request, *args, **kwargs):
        if not organised_club_ids(request.user):
            return HttpResponseRedirect(ONBOARDING_URL)

        club_ids = active_club_ids(request.user)
        if not club_ids:
            return HttpResponseRedirect(PRICING_URL)

        request.active_club_ids = club_ids
        return view_func(request, *args, **kwargs)

    return wrapper
