import json
import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from datetime import timedelta
from datetime import timezone as dt_timezone
from typing import Any, Dict, List, Optional

import stripe
from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import DatabaseError
from django.db import IntegrityError
from django.db import transaction
from django.dispatch import Signal
from django.utils import timezone

from smashscheduler.clubs.models import Club
from smashscheduler.clubs.models import ClubOrganiser

from .exceptions import AlreadyTrialled
from .exceptions import BillingError
from .exceptions import FulfillmentError
from .exceptions import InvalidIntent
from .exceptions import InvalidSession
from .exceptions import NotUpgradeable
from .exceptions import PaymentIncomplete
from .exceptions import ProcessorError
from .exceptions import Unauthorized
from .exceptions import ValidationError
from .intents import BaseIntent
from .intents import NewClubIntent
from .intents import TrialIntent
from .intents import UpgradeIntent
from .intents import parse_intent
from .models import BillingEventLog
from .models import FulfillmentRecord
from .models import Subscription

logger = logging.getLogger(__name__)

# Django signals for subscription events, sent after the transaction commits
subscription_fulfilled = Signal()
subscription_status_changed = Signal()
subscription_downgraded = Signal()

User = get_user_model()

PAID_STATUSES = ("paid", "no_payment_required")


def _field(obj, key, default=None):
    """Read ``key`` from a Stripe object, a plain dict or None."""
    if obj is None:
        return default
    if isinstance(obj, Mapping):
        return obj.get(key, default)
    try:
        return obj[key]
    except (KeyError, TypeError, AttributeError):
        return getattr(obj, key, default)


def _object_id(obj):
    """Stripe expandable fields are either an id string or an object with an id."""
    if obj is None or isinstance(obj, str):
        return obj
    return _field(obj, "id")


def _as_dict(obj) -> Dict[str, str]:
    if obj is None:
        return {}
    if isinstance(obj, Mapping):
        return {str(k): str(v) for k, v in obj.items()}
    if hasattr(obj, "to_dict"):
        return {str(k): str(v) for k, v in obj.to_dict().items()}
    return {}


def _from_timestamp(value) -> Optional[datetime]:
    if value in (None, ""):
        return None
    return datetime.fromtimestamp(int(value), tz=dt_timezone.utc)


def _default_period_end() -> datetime:
    return timezone.now() + timedelta(days=getattr(settings, "BILLING_DEFAULT_PERIOD_DAYS", 30))


def period_end_of(stripe_subscription) -> datetime:
    """
    Current period end of a Stripe subscription.

    Newer API versions carry the period on each subscription item, older ones
    on the subscription itself. Falls back to the default period length.
    """
    items = _field(_field(stripe_subscription, "items"), "data") or []
    if items:
        period_end = _from_timestamp(_field(items[0], "current_period_end"))
        if period_end:
            return period_end

    period_end = _from_timestamp(_field(stripe_subscription, "current_period_end"))
    return period_end or _default_period_end()


@dataclass(frozen=True)
class CheckoutSessionInfo:
    """What fulfillment needs from a resolved checkout session."""

    id: str
    payment_status: Optional[str]
    metadata: Dict[str, str]
    subscription_id: Optional[str]
    customer_id: Optional[str]
    subscription_status: Optional[str]
    current_period_end: Optional[datetime]

    @property
    def is_paid(self) -> bool:
        return self.payment_status in PAID_STATUSES


@dataclass(frozen=True)
class PriceInfo:
    id: str
    unit_amount: int
    currency: str
    interval: str


@dataclass(frozen=True)
class FulfillmentResult:
    """
    Outcome of a fulfillment attempt. ``created`` is False when an earlier
    call already fulfilled the same external subscription.
    """

    created: bool
    subscription: Optional[Subscription]
    club: Optional[Club]
    intent: Optional[BaseIntent] = field(default=None, compare=False)


def _load_organised_club(user, club_id) -> Club:
    """
    Get a club the user organises.

    Raises:
        ValidationError: If club_id is missing or malformed
        Unauthorized: If the club does not exist or the user does not organise it
    """
    if not club_id:
        raise ValidationError("Missing clubId")
    try:
        club_uuid = uuid.UUID(str(club_id))
    except ValueError:
        raise ValidationError("Malformed clubId")

    club = Club.objects.filter(pk=club_uuid).first()
    if club is None or not club.is_organiser(user):
        raise Unauthorized("Not a club organiser")
    return club


class StripeService:
    """
    Service class for handling Stripe API operations

    Every Stripe SDK failure leaves this class as a ProcessorError.
    """

    @staticmethod
    def create_customer(name: str, email: str, metadata: Dict[str, str]) -> str:
        """
        Create a Stripe customer

        Returns:
            str: The new customer id

        Raises:
            ProcessorError: If customer creation fails
        """
        try:
            customer = stripe.Customer.create(
                name=name,
                email=email,
                metadata=metadata,
            )
            logger.info(f"Created Stripe customer {customer.id} for user {metadata.get('user_id')}")
            return customer.id

        except stripe.StripeError as e:
            logger.error(f"Failed to create Stripe customer for user {metadata.get('user_id')}: {e}")
            raise ProcessorError(f"Failed to create customer: {e}")

    @staticmethod
    def create_checkout_session(
        customer_id: str,
        price_id: str,
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
        trial_days: Optional[int] = None,
    ):
        """
        Create a Stripe Checkout session for a subscription

        The intent metadata is attached both to the session and to the
        subscription it creates, so either object can be traced back.

        Returns:
            stripe.checkout.Session: Created checkout session

        Raises:
            ProcessorError: If session creation fails
        """
        subscription_data: Dict[str, Any] = {"metadata": metadata}
        session_data: Dict[str, Any] = {
            "mode": "subscription",
            "customer": customer_id,
            "line_items": [{
                "price": price_id,
                "quantity": 1,
            }],
            "metadata": metadata,
            "subscription_data": subscription_data,
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        if trial_days:
            subscription_data["trial_period_days"] = trial_days
            session_data["payment_method_collection"] = "if_required"
        else:
            session_data["payment_method_types"] = ["card"]

        try:
            session = stripe.checkout.Session.create(**session_data)
            logger.info(f"Created checkout session {session.id} for customer {customer_id}")
            return session

        except stripe.StripeError as e:
            logger.error(f"Failed to create checkout session: {e}")
            raise ProcessorError(f"Failed to create checkout session: {e}")

    @staticmethod
    def retrieve_subscription(subscription_id: str):
        """
        Retrieve a Stripe subscription

        Raises:
            ProcessorError: If retrieval fails
        """
        try:
            return stripe.Subscription.retrieve(subscription_id)
        except stripe.StripeError as e:
            logger.error(f"Failed to retrieve subscription {subscription_id}: {e}")
            raise ProcessorError(f"Failed to retrieve subscription: {e}")

    @staticmethod
    def retrieve_checkout_session(session_id: str) -> CheckoutSessionInfo:
        """
        Resolve a checkout session with its subscription expanded

        Raises:
            InvalidSession: If Stripe does not know the session
            ProcessorError: If the request fails for any other reason
        """
        try:
            session = stripe.checkout.Session.retrieve(session_id, expand=["subscription"])
        except stripe.InvalidRequestError as e:
            logger.warning(f"Checkout session {session_id} could not be resolved: {e}")
            raise InvalidSession("Invalid checkout session")
        except stripe.StripeError as e:
            logger.error(f"Failed to retrieve checkout session {session_id}: {e}")
            raise ProcessorError(f"Failed to retrieve checkout session: {e}")

        stripe_subscription = _field(session, "subscription")
        if isinstance(stripe_subscription, str):
            stripe_subscription = StripeService.retrieve_subscription(stripe_subscription)

        customer_id = _object_id(_field(stripe_subscription, "customer")) or _object_id(
            _field(session, "customer")
        )

        return CheckoutSessionInfo(
            id=_field(session, "id") or session_id,
            payment_status=_field(session, "payment_status"),
            metadata=_as_dict(_field(session, "metadata")),
            subscription_id=_object_id(stripe_subscription),
            customer_id=customer_id,
            subscription_status=_field(stripe_subscription, "status"),
            current_period_end=period_end_of(stripe_subscription) if stripe_subscription else None,
        )

    @staticmethod
    def create_portal_session(customer_id: str, return_url: str) -> str:
        """
        Create a Stripe billing portal session

        Raises:
            ProcessorError: If session creation fails
        """
        try:
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=return_url,
            )
            return session.url
        except stripe.StripeError as e:
            logger.error(f"Failed to create portal session for customer {customer_id}: {e}")
            raise ProcessorError(f"Failed to create billing portal session: {e}")

    @staticmethod
    def list_recurring_prices(product_id: str) -> List[PriceInfo]:
        """
        List active recurring prices of a product, monthly first

        Raises:
            ProcessorError: If listing fails
        """
        try:
            prices = stripe.Price.list(product=product_id, active=True, type="recurring")
        except stripe.StripeError as e:
            logger.error(f"Failed to list prices for product {product_id}: {e}")
            raise ProcessorError(f"Failed to list prices: {e}")

        result = []
        for price in _field(prices, "data") or []:
            recurring = _field(price, "recurring")
            unit_amount = _field(price, "unit_amount")
            if recurring is None or unit_amount is None:
                continue
            result.append(PriceInfo(
                id=_field(price, "id"),
                unit_amount=unit_amount,
                currency=_field(price, "currency"),
                interval=_field(recurring, "interval"),
            ))

        return sorted(result, key=lambda p: 0 if p.interval == "month" else 1)

    @staticmethod
    def construct_webhook_event(payload: bytes, sig_header: Optional[str]) -> Dict[str, Any]:
        """
        Verify a Stripe webhook payload against the endpoint secret

        Returns:
            dict: The verified event, decoded from the raw payload

        Raises:
            ValidationError: If the signature is missing or invalid, or the payload is malformed
        """
        if not sig_header:
            raise ValidationError("Missing stripe-signature header")

        webhook_secret = getattr(settings, "STRIPE_WEBHOOK_SECRET", "")
        if not webhook_secret:
            logger.error("Stripe webhook secret not configured")
            raise ValidationError("Webhook secret not configured")

        try:
            stripe.Webhook.construct_event(payload, sig_header, webhook_secret)
        except ValueError as e:
            logger.error(f"Invalid webhook payload: {e}")
            raise ValidationError("Invalid payload")
        except stripe.SignatureVerificationError as e:
            logger.error(f"Invalid webhook signature: {e}")
            raise ValidationError("Invalid signature")

        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        return json.loads(payload)


class CheckoutService:
    """
    Starts checkouts for the three fulfillment intents and returns the
    hosted checkout URL the caller should be redirected to.
    """

    @staticmethod
    def _app_url() -> str:
        return settings.APP_URL.rstrip("/")

    @classmethod
    def _success_url(cls, upgrade_slug: Optional[str] = None) -> str:
        url = f"{cls._app_url()}/checkout/pending?session_id={{CHECKOUT_SESSION_ID}}"
        if upgrade_slug:
            url = f"{url}&upgrade={upgrade_slug}"
        return url

    @staticmethod
    def _require(value, message):
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValidationError(message)
        return value.strip() if isinstance(value, str) else value

    @classmethod
    def _open_checkout(
        cls,
        user,
        intent: BaseIntent,
        price_id: str,
        customer_name: str,
        success_url: str,
        cancel_url: str,
        trial_days: Optional[int] = None,
    ) -> str:
        metadata = intent.to_metadata()
        customer_id = StripeService.create_customer(
            name=customer_name,
            email=user.email,
            metadata={"user_id": str(user.pk)},
        )
        session = StripeService.create_checkout_session(
            customer_id=customer_id,
            price_id=price_id,
            metadata=metadata,
            success_url=success_url,
            cancel_url=cancel_url,
            trial_days=trial_days,
        )

        BillingEventLog.log_internal_event(
            BillingEventLog.EventType.CHECKOUT_SESSION_CREATED,
            {
                "checkout_session_id": session.id,
                "customer_id": customer_id,
                "price_id": price_id,
                **metadata,
            },
        )
        logger.info(f"Started {metadata['intent']} checkout {session.id} for user {user.pk}")
        return session.url

    @classmethod
    def start_new_club_checkout(cls, user, club_name, price_id) -> str:
        club_name = cls._require(club_name, "Missing clubName")
        price_id = cls._require(price_id, "Missing priceId")

        intent = NewClubIntent(user_id=str(user.pk), club_name=club_name)
        return cls._open_checkout(
            user,
            intent,
            price_id,
            customer_name=club_name,
            success_url=cls._success_url(),
            cancel_url=f"{cls._app_url()}/pricing",
        )

    @classmethod
    def start_trial_checkout(cls, user, club_name, price_id) -> str:
        """
        Start a trial checkout. Trials are once per user, across every club
        they organise.

        Raises:
            AlreadyTrialled: If any club the user organises has ever been pro
        """
        club_name = cls._require(club_name, "Missing clubName")
        price_id = cls._require(price_id, "Missing priceId")

        if Subscription.objects.ever_pro_for_user(user):
            logger.info(f"User {user.pk} attempted a second trial")
            raise AlreadyTrialled()

        intent = TrialIntent(user_id=str(user.pk), club_name=club_name)
        return cls._open_checkout(
            user,
            intent,
            price_id,
            customer_name=club_name,
            success_url=cls._success_url(),
            cancel_url=f"{cls._app_url()}/pricing",
            trial_days=settings.BILLING_TRIAL_PERIOD_DAYS,
        )

    @classmethod
    def start_upgrade_checkout(cls, user, club_id, price_id) -> str:
        """
        Start a checkout that upgrades an existing free club to pro.

        Raises:
            Unauthorized: If the user does not organise the club
            NotUpgradeable: If the club is not on an active free subscription
        """
        price_id = cls._require(price_id, "Missing priceId")
        club = _load_organised_club(user, club_id)

        subscription = Subscription.objects.current_for_club(club)
        if subscription is None or not subscription.is_upgradeable:
            raise NotUpgradeable()

        intent = UpgradeIntent(user_id=str(user.pk), club_id=str(club.pk))
        return cls._open_checkout(
            user,
            intent,
            price_id,
            customer_name=club.name,
            success_url=cls._success_url(upgrade_slug=club.slug),
            cancel_url=f"{cls._app_url()}/upgrade?club={club.slug}",
        )

    @classmethod
    def create_portal_session(cls, user, club_id, return_url=None) -> str:
        """Open the Stripe billing portal for a club's stored customer."""
        club = _load_organised_club(user, club_id)

        subscription = (
            Subscription.objects.for_club(club)
            .exclude(stripe_customer_id__isnull=True)
            .exclude(stripe_customer_id="")
            .order_by("-updated_at")
            .first()
        )
        if subscription is None:
            raise ValidationError("No Stripe subscription found")

        return_url = return_url or f"{cls._app_url()}/clubs/{club.slug}/manage"
        return StripeService.create_portal_session(subscription.stripe_customer_id, return_url)

    @staticmethod
    def list_pro_prices() -> List[PriceInfo]:
        return StripeService.list_recurring_prices(settings.STRIPE_PRO_PRODUCT_ID)


class FulfillmentService:
    """
    Turns a completed checkout into club and subscription state, exactly once
    per external subscription id.

    The push notification and the client confirmation both call ``fulfil``.
    Either may arrive first, both may arrive, and either may be repeated.
    """

    @classmethod
    def fulfil(cls, session_id, caller=None) -> FulfillmentResult:
        """
        Fulfil a checkout session.

        Args:
            session_id: Stripe checkout session id
            caller: The authenticated user on the client confirmation path,
                None on the signature-verified push path

        Raises:
            ValidationError: If session_id is missing
            InvalidSession: If the session cannot be resolved or has no subscription
            PaymentIncomplete: If payment has not completed yet
            Unauthorized: If the caller did not start this checkout
            ProcessorError: If Stripe cannot be reached
            FulfillmentError: If the store mutation fails
        """
        if not session_id:
            raise ValidationError("Missing sessionId")

        session = StripeService.retrieve_checkout_session(session_id)

        if not session.is_paid:
            logger.info(f"Checkout session {session_id} not paid yet ({session.payment_status})")
            raise PaymentIncomplete()

        intent = parse_intent(session.metadata)
        if caller is not None and str(caller.pk) != intent.user_id:
            logger.warning(f"User {caller.pk} tried to fulfil checkout session {session_id} of user {intent.user_id}")
            raise Unauthorized("User mismatch")

        if not session.subscription_id:
            raise InvalidSession("No subscription found")

        return cls.apply(session, intent, caller=caller)

    @classmethod
    def apply(cls, session: CheckoutSessionInfo, intent, caller=None) -> FulfillmentResult:
        """
        Run the idempotency gate and the create-or-mutate unit in one transaction.

        The gate runs before any identity or club lookup, so repeating an
        already fulfilled checkout succeeds even if the club or its organisers
        have since changed.
        """
        try:
            with transaction.atomic():
                existing = cls._already_fulfilled(session.subscription_id)
                if existing is not None:
                    return existing

                user = caller if caller is not None else cls._resolve_user(intent)

                if isinstance(intent, (NewClubIntent, TrialIntent)):
                    result = cls._create_club(session, intent, user)
                elif isinstance(intent, UpgradeIntent):
                    club = cls._lock_upgrade_target(intent, user)
                    # A concurrent upgrade may have committed while we waited on the lock.
                    existing = cls._already_fulfilled(session.subscription_id)
                    if existing is not None:
                        return existing
                    result = cls._upgrade_club(session, intent, club)
                else:
                    raise InvalidIntent(f"Unsupported intent {intent!r}")

                FulfillmentRecord.record(
                    stripe_subscription_id=session.subscription_id,
                    checkout_session_id=session.id,
                    intent=intent.intent,
                    subscription=result.subscription,
                )

        except IntegrityError as e:
            # A concurrent call committed the same external subscription first.
            existing = cls._already_fulfilled(session.subscription_id)
            if existing is not None:
                return existing
            logger.error(f"Fulfillment of checkout session {session.id} failed: {e}")
            raise FulfillmentError(f"Club creation failed: {e}")
        except DatabaseError as e:
            logger.error(f"Fulfillment of checkout session {session.id} failed: {e}")
            raise FulfillmentError(f"Club creation failed: {e}")

        transaction.on_commit(lambda: subscription_fulfilled.send(
            sender=Subscription,
            subscription=result.subscription,
            club=result.club,
            intent=intent,
        ))
        return result

    @staticmethod
    def _resolve_user(intent):
        try:
            user = User.objects.filter(pk=intent.user_id).first()
        except (ValueError, TypeError):
            raise InvalidIntent("Malformed user id in checkout metadata")
        if user is None:
            raise FulfillmentError(f"User {intent.user_id} from checkout metadata no longer exists")
        return user

    @staticmethod
    def _already_fulfilled(stripe_subscription_id) -> Optional[FulfillmentResult]:
        """
        Look up the fulfillment ledger. The subscription and club of the result
        are None when they have been deleted since.
        """
        record = (
            FulfillmentRecord.objects.select_related("club", "subscription")
            .filter(stripe_subscription_id=stripe_subscription_id)
            .first()
        )
        if record is None:
            return None
        logger.info(f"Subscription {stripe_subscription_id} already fulfilled for club {record.club_id}")
        return FulfillmentResult(created=False, subscription=record.subscription, club=record.club)

    @staticmethod
    def _lock_upgrade_target(intent: UpgradeIntent, user) -> Club:
        try:
            club_uuid = uuid.UUID(intent.club_id)
        except ValueError:
            raise InvalidIntent("Malformed club id in checkout metadata")

        club = Club.objects.filter(pk=club_uuid).first()
        if club is None:
            raise FulfillmentError(f"Club {intent.club_id} no longer exists")
        if not club.is_organiser(user):
            raise Unauthorized("Not a club organiser")

        # Serialise concurrent upgrades of the same club on its subscription rows.
        list(Subscription.objects.select_for_update().for_club(club))
        return club

    @staticmethod
    def _create_club(session: CheckoutSessionInfo, intent, user) -> FulfillmentResult:
        club = Club.objects.create(name=intent.club_name, created_by=user)
        ClubOrganiser.objects.create(user=user, club=club)

        subscription = Subscription(club=club)
        subscription.mark_pro(
            stripe_subscription_id=session.subscription_id,
            stripe_customer_id=session.customer_id,
            status=Subscription.fulfilled_status(session.subscription_status),
            current_period_end=session.current_period_end or _default_period_end(),
        )
        subscription.save()

        BillingEventLog.log_internal_event(
            BillingEventLog.EventType.CHECKOUT_FULFILLED,
            {
                "checkout_session_id": session.id,
                "stripe_subscription_id": session.subscription_id,
                **intent.to_metadata(),
            },
            subscription=subscription,
        )
        logger.info(f"Created club {club.pk} ({club.slug}) with {subscription.status} pro subscription {session.subscription_id}")
        return FulfillmentResult(created=True, subscription=subscription, club=club, intent=intent)

    @staticmethod
    def _upgrade_club(session: CheckoutSessionInfo, intent: UpgradeIntent, club: Club) -> FulfillmentResult:
        subscription = Subscription.objects.active_like().for_club(club).first()
        if subscription is None or not subscription.is_upgradeable:
            # The customer has paid but there is nothing to upgrade.
            logger.error(f"Club {club.pk} has no active free subscription to upgrade for {session.subscription_id}")
            raise FulfillmentError("Upgrade failed: club has no active free subscription")

        subscription.mark_pro(
            stripe_subscription_id=session.subscription_id,
            stripe_customer_id=session.customer_id,
            status=Subscription.fulfilled_status(session.subscription_status),
            current_period_end=session.current_period_end or _default_period_end(),
        )
        subscription.save()

        BillingEventLog.log_internal_event(
            BillingEventLog.EventType.CHECKOUT_FULFILLED,
            {
                "checkout_session_id": session.id,
                "stripe_subscription_id": session.subscription_id,
                **intent.to_metadata(),
            },
            subscription=subscription,
        )
        logger.info(f"Upgraded club {club.pk} subscription {subscription.pk} to pro ({session.subscription_id})")
        return FulfillmentResult(created=True, subscription=subscription, club=club, intent=intent)

    @staticmethod
    def apply_status_change(
        stripe_subscription_id,
        new_status,
        current_period_end=None,
    ) -> Optional[Subscription]:
        """
        Apply a processor-reported status to the row holding an external
        subscription id.

        Unknown subscription ids are ignored. A status that would make a
        second row for the same club active is refused.
        """
        if not stripe_subscription_id:
            return None

        with transaction.atomic():
            subscription = (
                Subscription.objects.select_for_update()
                .filter(stripe_subscription_id=stripe_subscription_id)
                .first()
            )
            if subscription is None:
                logger.info(f"No subscription for {stripe_subscription_id}; status change ignored")
                return None

            if new_status is None:
                return subscription

            if new_status in Subscription.ACTIVE_STATUSES and not subscription.is_active:
                other_active = (
                    Subscription.objects.active_like()
                    .for_club(subscription.club_id)
                    .exclude(pk=subscription.pk)
                    .exists()
                )
                if other_active:
                    logger.warning(
                        f"Refusing to reactivate {stripe_subscription_id}: club {subscription.club_id} already has an active subscription"
                    )
                    return subscription

            old_status = subscription.status
            update_fields = ["status", "updated_at"]
            subscription.status = new_status
            if current_period_end is not None:
                subscription.current_period_end = current_period_end
                update_fields.append("current_period_end")
            subscription.save(update_fields=update_fields)

            if old_status != new_status:
                logger.info(f"Subscription {stripe_subscription_id} status {old_status} -> {new_status}")
                transaction.on_commit(lambda: subscription_status_changed.send(
                    sender=Subscription,
                    subscription=subscription,
                    old_status=old_status,
                    new_status=new_status,
                ))

        return subscription


class SubscriptionService:
    """
    Local subscription transitions that need no processor confirmation
    """

    @staticmethod
    def downgrade(user, club_id) -> Subscription:
        """
        Move a club to the free plan immediately.

        Billing at the processor continues independently until the
        processor reports the cancellation.

        Raises:
            Unauthorized: If the user does not organise the club
        """
        club = _load_organised_club(user, club_id)

        with transaction.atomic():
            subscription = (
                Subscription.objects.select_for_update()
                .active_like()
                .for_club(club)
                .first()
            )
            if subscription is None:
                subscription = (
                    Subscription.objects.select_for_update()
                    .for_club(club)
                    .order_by("-updated_at")
                    .first()
                )
            if subscription is None:
                subscription = Subscription(club=club)

            previous = {
                "plan_type": subscription.plan_type,
                "status": subscription.status,
                "stripe_subscription_id": subscription.stripe_subscription_id,
            }
            subscription.mark_free()
            subscription.save()

            BillingEventLog.log_internal_event(
                BillingEventLog.EventType.SUBSCRIPTION_DOWNGRADED,
                {"club_id": str(club.pk), "user_id": str(user.pk), "previous": previous},
                subscription=subscription,
            )
            transaction.on_commit(lambda: subscription_downgraded.send(
                sender=Subscription,
                subscription=subscription,
                club=club,
            ))

        logger.info(f"Downgraded club {club.pk} to free (was {previous['plan_type']}/{previous['status']})")
        return subscription


class WebhookService:
    """
    Push-notification adapter: verifies the payload and routes each event to
    the reconciler. Events are deduplicated by their Stripe event id.
    """

    PROCESSED = "processed"
    IGNORED = "ignored"
    DUPLICATE = "duplicate"

    FULFILLMENT_EVENTS = (
        BillingEventLog.EventType.CHECKOUT_SESSION_COMPLETED,
        BillingEventLog.EventType.CHECKOUT_SESSION_ASYNC_PAYMENT_SUCCEEDED,
    )

    # Business outcomes that a redelivery would not change.
    ACKNOWLEDGED_ERRORS = (ValidationError, InvalidSession, PaymentIncomplete, Unauthorized, NotUpgradeable)

    @classmethod
    def handle(cls, payload: bytes, sig_header: Optional[str]) -> str:
        """
        Verify and process a webhook delivery.

        Raises:
            ValidationError: If the signature cannot be verified
            ProcessorError, FulfillmentError: If processing failed and the
                delivery should be retried
        """
        event = StripeService.construct_webhook_event(payload, sig_header)
        event_id = event.get("id")
        event_type = event.get("type", "")
        data_object = (event.get("data") or {}).get("object") or {}

        logger.info(f"Received Stripe webhook: {event_type} ({event_id})")

        event_log, created = BillingEventLog.log_stripe_event(event_id, event_type, event.get("data") or {})
        if not created and event_log.processing_status in (
            BillingEventLog.ProcessingStatus.PROCESSED,
            BillingEventLog.ProcessingStatus.IGNORED,
        ):
            logger.info(f"Event {event_id} already handled")
            return cls.DUPLICATE

        try:
            subscription, ignore_reason = cls._dispatch(event_type, data_object)
        except cls.ACKNOWLEDGED_ERRORS as e:
            logger.info(f"Event {event_id} acknowledged without changes: {e}")
            event_log.mark_ignored(str(e))
            return cls.IGNORED
        except BillingError as e:
            event_log.mark_failed(str(e))
            raise

        if ignore_reason:
            event_log.mark_ignored(ignore_reason)
            return cls.IGNORED

        event_log.mark_processed(subscription=subscription)
        return cls.PROCESSED

    @classmethod
    def _dispatch(cls, event_type, data_object):
        """Returns (subscription or None, ignore reason or None)."""
        if event_type in cls.FULFILLMENT_EVENTS:
            if data_object.get("mode") not in (None, "subscription"):
                return None, f"checkout mode {data_object.get('mode')}"
            result = FulfillmentService.fulfil(data_object.get("id"))
            return result.subscription, None

        if event_type == BillingEventLog.EventType.SUBSCRIPTION_DELETED:
            subscription = FulfillmentService.apply_status_change(
                data_object.get("id"),
                Subscription.Status.CANCELLED,
            )
            return subscription, None if subscription else "unknown subscription"

        if event_type == BillingEventLog.EventType.SUBSCRIPTION_UPDATED:
            subscription = FulfillmentService.apply_status_change(
                data_object.get("id"),
                Subscription.status_from_processor(data_object.get("status")),
                current_period_end=period_end_of(data_object),
            )
            return subscription, None if subscription else "unknown subscription"

        if event_type == BillingEventLog.EventType.INVOICE_FAILED:
            subscription_id = cls._invoice_subscription_id(data_object)
            if not subscription_id:
                return None, "invoice without subscription"
            subscription = FulfillmentService.apply_status_change(
                subscription_id,
                Subscription.Status.EXPIRED,
            )
            return subscription, None if subscription else "unknown subscription"

        logger.info(f"Unhandled Stripe webhook event: {event_type}")
        return None, f"unhandled event type {event_type}"

    @staticmethod
    def _invoice_subscription_id(invoice):
        details = (invoice.get("parent") or {}).get("subscription_details") or {}
        return _object_id(details.get("subscription")) or _object_id(invoice.get("subscription"))
