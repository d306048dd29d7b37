import uuid

from django.db import models
from django.db.models import Q
from django.utils import timezone

from smashscheduler.clubs.models import Club

from .plans import PlanTier


class SubscriptionQuerySet(models.QuerySet):
    def active_like(self):
        """Rows that grant access: active or trialling."""
        return self.filter(status__in=Subscription.ACTIVE_STATUSES)

    def for_club(self, club):
        return self.filter(club=club)

    def for_external_id(self, stripe_subscription_id):
        return self.filter(stripe_subscription_id=stripe_subscription_id)

    def organised_by(self, user):
        return self.filter(club__organisers__user=user)

    def ever_pro(self):
        return self.filter(Q(plan_type=PlanTier.PRO) | Q(pro_since__isnull=False))


class SubscriptionManager(models.Manager.from_queryset(SubscriptionQuerySet)):
    def exists_for_external_id(self, stripe_subscription_id) -> bool:
        if not stripe_subscription_id:
            return False
        return self.for_external_id(stripe_subscription_id).exists()

    def current_for_club(self, club):
        """The club's active-like row, else its most recently updated row."""
        subscription = self.active_like().for_club(club).first()
        if subscription is None:
            subscription = self.for_club(club).order_by("-updated_at").first()
        return subscription

    def ever_pro_for_user(self, user) -> bool:
        """Whether any club the user organises has ever been on the pro plan."""
        return self.organised_by(user).ever_pro().exists()


class Subscription(models.Model):
    """
    A club's plan. At most one row per club is active or trialling at a time;
    older cancelled or expired rows are kept for history.
    """

    class Status(models.TextChoices):
        ACTIVE = "active", "Active"
        TRIALLING = "trialling", "Trialling"
        CANCELLED = "cancelled", "Cancelled"
        EXPIRED = "expired", "Expired"

    ACTIVE_STATUSES = [Status.ACTIVE, Status.TRIALLING]

    # Processor subscription status -> local status. Statuses not listed
    # here (past_due, incomplete, paused) leave the local row unchanged.
    PROCESSOR_STATUS_MAP = {
        "trialing": Status.TRIALLING,
        "active": Status.ACTIVE,
        "canceled": Status.CANCELLED,
        "unpaid": Status.EXPIRED,
        "incomplete_expired": Status.EXPIRED,
    }

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    club = models.ForeignKey(
        Club,
        on_delete=models.CASCADE,
        related_name="subscriptions",
    )
    plan_type = models.CharField(
        max_length=20,
        choices=PlanTier.choices,
        default=PlanTier.FREE,
    )
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.ACTIVE,
    )

    # Stripe integration
    stripe_customer_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Stripe Customer ID",
    )
    stripe_subscription_id = models.CharField(
        max_length=255,
        unique=True,
        null=True,
        blank=True,
        help_text="Stripe Subscription ID; the idempotency key for fulfillment",
    )

    current_period_end = models.DateTimeField(
        null=True,
        blank=True,
        help_text="End of current billing period",
    )
    pro_since = models.DateTimeField(
        null=True,
        blank=True,
        help_text="First time this row reached the pro plan; never cleared",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = SubscriptionManager()

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["club"],
                condition=Q(status__in=["active", "trialling"]),
                name="billing_one_active_subscription_per_club",
            ),
        ]
        indexes = [
            models.Index(fields=["status"], name="billing_sub_status_idx"),
            models.Index(fields=["stripe_customer_id"], name="billing_sub_customer_idx"),
        ]

    def __str__(self):
        return f"{self.club.name} - {self.get_plan_type_display()} ({self.status})"

    @property
    def is_active(self):
        """Check if subscription is in an active state"""
        return self.status in self.ACTIVE_STATUSES

    @property
    def is_trialling(self):
        return self.status == self.Status.TRIALLING

    @property
    def is_pro(self):
        return self.plan_type == PlanTier.PRO

    @property
    def is_upgradeable(self):
        """Only an active free row can be upgraded in place."""
        return self.plan_type == PlanTier.FREE and self.status == self.Status.ACTIVE

    @property
    def days_until_renewal(self):
        """Get days until next renewal"""
        if not self.current_period_end:
            return None

        delta = self.current_period_end - timezone.now()
        return max(0, delta.days)

    @classmethod
    def status_from_processor(cls, processor_status):
        """Map a processor status to a local one, None when it has no mapping."""
        return cls.PROCESSOR_STATUS_MAP.get(processor_status)

    @classmethod
    def fulfilled_status(cls, processor_status):
        """Status for a freshly fulfilled checkout: trialling or active."""
        if processor_status == "trialing":
            return cls.Status.TRIALLING
        return cls.Status.ACTIVE

    def mark_pro(self, *, stripe_subscription_id, stripe_customer_id, status, current_period_end):
        self.plan_type = PlanTier.PRO
        self.status = status
        self.stripe_subscription_id = stripe_subscription_id
        self.stripe_customer_id = stripe_customer_id
        self.current_period_end = current_period_end
        if self.pro_since is None:
            self.pro_since = timezone.now()

    def mark_free(self):
        self.plan_type = PlanTier.FREE
        self.status = self.Status.ACTIVE
        self.stripe_subscription_id = None
        self.stripe_customer_id = None
        self.current_period_end = None


class FulfillmentRecord(models.Model):
    """
    One row per fulfilled Stripe subscription. Never updated or cleared, so a
    checkout stays fulfilled after the club downgrades or is deleted.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    stripe_subscription_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe Subscription ID that was fulfilled",
    )
    checkout_session_id = models.CharField(max_length=255, blank=True)
    intent = models.CharField(max_length=20)

    club = models.ForeignKey(
        Club,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="fulfillment_records",
    )
    subscription = models.ForeignKey(
        Subscription,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="fulfillment_records",
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.stripe_subscription_id} ({self.intent})"

    @classmethod
    def record(cls, *, stripe_subscription_id, checkout_session_id, intent, subscription):
        return cls.objects.create(
            stripe_subscription_id=stripe_subscription_id,
            checkout_session_id=checkout_session_id or "",
            intent=intent,
            club=subscription.club,
            subscription=subscription,
        )


class BillingEventLog(models.Model):
    """
    Logs Stripe webhook events and internal billing events
    """

    class EventType(models.TextChoices):
        # Checkout events
        CHECKOUT_SESSION_COMPLETED = "checkout.session.completed", "Checkout Completed"
        CHECKOUT_SESSION_ASYNC_PAYMENT_SUCCEEDED = (
            "checkout.session.async_payment_succeeded",
            "Checkout Async Payment Succeeded",
        )

        # Subscription events
        SUBSCRIPTION_UPDATED = "customer.subscription.updated", "Subscription Updated"
        SUBSCRIPTION_DELETED = "customer.subscription.deleted", "Subscription Deleted"

        # Payment events
        INVOICE_FAILED = "invoice.payment_failed", "Invoice Payment Failed"

        # Custom internal events
        CHECKOUT_SESSION_CREATED = "checkout.session.created", "Checkout Started"
        CHECKOUT_FULFILLED = "checkout.fulfilled", "Checkout Fulfilled"
        SUBSCRIPTION_DOWNGRADED = "subscription.downgraded", "Downgraded To Free"

    class ProcessingStatus(models.TextChoices):
        PENDING = "pending", "Pending"
        PROCESSED = "processed", "Processed"
        FAILED = "failed", "Failed"
        IGNORED = "ignored", "Ignored"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Event identification
    stripe_event_id = models.CharField(
        max_length=255,
        unique=True,
        null=True,
        blank=True,
        help_text="Stripe Event ID (null for internal events)",
    )
    event_type = models.CharField(
        max_length=64,
        help_text="Type of billing event",
    )

    # Processing status
    processing_status = models.CharField(
        max_length=20,
        choices=ProcessingStatus.choices,
        default=ProcessingStatus.PENDING,
    )
    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the event was successfully processed",
    )

    # Event data
    data_json = models.JSONField(
        default=dict,
        help_text="Event payload from Stripe or internal event data",
    )

    subscription = models.ForeignKey(
        Subscription,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="billing_events",
    )

    # Error tracking
    error_message = models.TextField(
        blank=True,
        help_text="Error message if processing failed",
    )
    retry_count = models.IntegerField(
        default=0,
        help_text="Number of processing retry attempts",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["event_type", "processing_status"], name="billing_evt_type_status_idx"),
            models.Index(fields=["processing_status", "created_at"], name="billing_evt_status_created_idx"),
        ]

    def __str__(self):
        club_name = self.subscription.club.name if self.subscription else "N/A"
        return f"{self.event_type} - {club_name} ({self.processing_status})"

    @property
    def is_processed(self):
        return self.processing_status == self.ProcessingStatus.PROCESSED

    def mark_processed(self, subscription=None):
        """Mark event as successfully processed"""
        self.processing_status = self.ProcessingStatus.PROCESSED
        self.processed_at = timezone.now()
        self.error_message = ""
        update_fields = ["processing_status", "processed_at", "error_message", "updated_at"]
        if subscription is not None:
            self.subscription = subscription
            update_fields.append("subscription")
        self.save(update_fields=update_fields)

    def mark_failed(self, error_message):
        """Mark event as failed with error message"""
        self.processing_status = self.ProcessingStatus.FAILED
        self.error_message = error_message
        self.retry_count += 1
        self.save(update_fields=["processing_status", "error_message", "retry_count", "updated_at"])

    def mark_ignored(self, reason=""):
        """Mark event as ignored (not relevant for processing)"""
        self.processing_status = self.ProcessingStatus.IGNORED
        self.processed_at = timezone.now()
        if reason:
            self.error_message = f"Ignored: {reason}"
        self.save(update_fields=["processing_status", "processed_at", "error_message", "updated_at"])

    def can_retry(self, max_retries=3):
        """Check if event can be retried"""
        return (
            self.processing_status == self.ProcessingStatus.FAILED
            and self.retry_count < max_retries
        )

    @classmethod
    def log_stripe_event(cls, stripe_event_id, event_type, event_data):
        """Get or create the log row for a Stripe webhook event"""
        return cls.objects.get_or_create(
            stripe_event_id=stripe_event_id,
            defaults={
                "event_type": event_type,
                "data_json": event_data,
            },
        )

    @classmethod
    def log_internal_event(cls, event_type, event_data, subscription=None):
        """Create a new internal billing event log"""
        return cls.objects.create(
            event_type=event_type,
            data_json=event_data,
            subscription=subscription,
            processing_status=cls.ProcessingStatus.PROCESSED,
            processed_at=timezone.now(),
        )

    @classmethod
    def get_failed_events(cls, max_retries=3):
        """Get failed events that can be retried"""
        return cls.objects.filter(
            processing_status=cls.ProcessingStatus.FAILED,
            retry_count__lt=max_retries,
        ).order_by("created_at")
