from dataclasses import asdict

from django.http import HttpRequest
from ninja import Router

from smashscheduler.api.schemas.billing import CheckoutRequest
from smashscheduler.api.schemas.billing import CheckoutResponse
from smashscheduler.api.schemas.billing import ClubRequest
from smashscheduler.api.schemas.billing import ClubSubscription
from smashscheduler.api.schemas.billing import DowngradeResponse
from smashscheduler.api.schemas.billing import FulfilRequest
from smashscheduler.api.schemas.billing import FulfilResponse
from smashscheduler.api.schemas.billing import Price
from smashscheduler.api.schemas.billing import UpgradeCheckoutRequest
from smashscheduler.billing import gates
from smashscheduler.billing.services import CheckoutService
from smashscheduler.billing.services import FulfillmentService
from smashscheduler.billing.services import SubscriptionService

router = Router()


def serialize_club_subscription(club, subscription, active_ids=None):
    if active_ids is None:
        is_active = subscription is not None and subscription.is_active
    else:
        is_active = club.pk in active_ids

    return {
        "club_id": club.pk,
        "club_name": club.name,
        "club_slug": club.slug,
        "plan_type": subscription.plan_type if subscription else None,
        "status": subscription.status if subscription else None,
        "current_period_end": subscription.current_period_end if subscription else None,
        "is_active": is_active,
    }


@router.post("/checkout", response=CheckoutResponse)
def start_checkout(request: HttpRequest, payload: CheckoutRequest):
    """Start a paid checkout that creates a new club."""
    url = CheckoutService.start_new_club_checkout(request.auth, payload.club_name, payload.price_id)
    return {"url": url}


@router.post("/checkout/trial", response=CheckoutResponse)
def start_trial_checkout(request: HttpRequest, payload: CheckoutRequest):
    """Start a trial checkout that creates a new club. One trial per user."""
    url = CheckoutService.start_trial_checkout(request.auth, payload.club_name, payload.price_id)
    return {"url": url}


@router.post("/checkout/upgrade", response=CheckoutResponse)
def start_upgrade_checkout(request: HttpRequest, payload: UpgradeCheckoutRequest):
    """Start a checkout that upgrades a free club to pro."""
    url = CheckoutService.start_upgrade_checkout(request.auth, payload.club_id, payload.price_id)
    return {"url": url}


@router.post("/checkout/fulfil", response=FulfilResponse, by_alias=True)
def fulfil_checkout(request: HttpRequest, payload: FulfilRequest):
    """
    Client confirmation after the checkout redirect.

    Safe to call more than once and in any order with the webhook.
    """
    result = FulfillmentService.fulfil(payload.session_id, caller=request.auth)
    return {
        "success": True,
        "created": result.created,
        "club_id": result.club.pk if result.club else None,
        "club_slug": result.club.slug if result.club else None,
    }


@router.post("/downgrade", response=DowngradeResponse, by_alias=True)
def downgrade(request: HttpRequest, payload: ClubRequest):
    subscription = SubscriptionService.downgrade(request.auth, payload.club_id)
    return {
        "success": True,
        "subscription": serialize_club_subscription(subscription.club, subscription),
    }


@router.post("/portal", response=CheckoutResponse)
def billing_portal(request: HttpRequest, payload: ClubRequest):
    url = CheckoutService.create_portal_session(request.auth, payload.club_id)
    return {"url": url}


@router.get("/prices", response=list[Price], by_alias=True)
def list_prices(request: HttpRequest):
    return [asdict(price) for price in CheckoutService.list_pro_prices()]


@router.get("/subscriptions", response=list[ClubSubscription], by_alias=True)
def list_subscriptions(request: HttpRequest):
    """Subscriptions of every club the caller organises."""
    active_ids = gates.active_club_ids(request.auth)
    return [
        serialize_club_subscription(club, subscription, active_ids)
        for club, subscription in gates.get_club_subscriptions(request.auth)
    ]
