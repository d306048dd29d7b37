from django.contrib import admin
from django.urls import reverse
from django.utils.html import format_html
from django.utils.translation import gettext_lazy as _
from unfold.admin import ModelAdmin

from .models import BillingEventLog
from .models import FulfillmentRecord
from .models import Subscription

STATUS_COLORS = {
    Subscription.Status.ACTIVE: "#10b981",  # green
    Subscription.Status.TRIALLING: "#3b82f6",  # blue
    Subscription.Status.CANCELLED: "#ef4444",  # red
    Subscription.Status.EXPIRED: "#6b7280",  # gray
}

PROCESSING_COLORS = {
    BillingEventLog.ProcessingStatus.PENDING: "#f59e0b",
    BillingEventLog.ProcessingStatus.PROCESSED: "#10b981",
    BillingEventLog.ProcessingStatus.FAILED: "#ef4444",
    BillingEventLog.ProcessingStatus.IGNORED: "#6b7280",
}


@admin.register(Subscription)
class SubscriptionAdmin(ModelAdmin):
    """Admin interface for club subscriptions."""

    list_display = [
        "club_name",
        "plan_type",
        "status_display",
        "current_period_end",
        "pro_since",
        "updated_at",
    ]
    list_filter = ["plan_type", "status", "created_at"]
    search_fields = [
        "club__name",
        "club__slug",
        "stripe_customer_id",
        "stripe_subscription_id",
    ]
    readonly_fields = [
        "stripe_customer_id",
        "stripe_subscription_id",
        "pro_since",
        "created_at",
        "updated_at",
    ]
    raw_id_fields = ["club"]
    ordering = ["-updated_at"]

    fieldsets = (
        (_("Subscription Details"), {
            "fields": ("club", "plan_type", "status", "pro_since"),
        }),
        (_("Stripe Information"), {
            "fields": ("stripe_customer_id", "stripe_subscription_id"),
            "classes": ("collapse",),
        }),
        (_("Billing Period"), {
            "fields": ("current_period_end",),
        }),
        (_("Timestamps"), {
            "fields": ("created_at", "updated_at"),
            "classes": ("collapse",),
        }),
    )

    def club_name(self, obj):
        """Display club name with link to club admin."""
        return format_html(
            '<a href="{}">{}</a>',
            reverse("admin:clubs_club_change", args=[obj.club_id]),
            obj.club.name,
        )
    club_name.short_description = _("Club")
    club_name.admin_order_field = "club__name"

    def status_display(self, obj):
        return format_html(
            '<span style="color: {}; font-weight: bold;">{}</span>',
            STATUS_COLORS.get(obj.status, "#6b7280"),
            obj.get_status_display(),
        )
    status_display.short_description = _("Status")
    status_display.admin_order_field = "status"


@admin.register(FulfillmentRecord)
class FulfillmentRecordAdmin(ModelAdmin):
    """Read-only ledger of fulfilled Stripe subscriptions."""

    list_display = ["stripe_subscription_id", "intent", "club", "checkout_session_id", "created_at"]
    list_filter = ["intent", "created_at"]
    search_fields = ["stripe_subscription_id", "checkout_session_id", "club__name"]
    ordering = ["-created_at"]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(BillingEventLog)
class BillingEventLogAdmin(ModelAdmin):
    """Admin interface for BillingEventLog model."""

    list_display = [
        "event_type",
        "stripe_event_id",
        "processing_status_display",
        "subscription",
        "retry_count",
        "created_at",
    ]
    list_filter = ["event_type", "processing_status", "created_at"]
    search_fields = [
        "stripe_event_id",
        "event_type",
        "subscription__club__name",
        "subscription__stripe_subscription_id",
    ]
    readonly_fields = [
        "stripe_event_id",
        "event_type",
        "processed_at",
        "data_json",
        "subscription",
        "created_at",
        "updated_at",
    ]
    ordering = ["-created_at"]

    fieldsets = (
        (_("Event Details"), {
            "fields": ("stripe_event_id", "event_type", "subscription"),
        }),
        (_("Processing"), {
            "fields": ("processing_status", "processed_at", "error_message", "retry_count"),
        }),
        (_("Event Data"), {
            "fields": ("data_json",),
            "classes": ("collapse",),
        }),
        (_("Timestamps"), {
            "fields": ("created_at", "updated_at"),
        }),
    )

    def processing_status_display(self, obj):
        return format_html(
            '<span style="color: {}; font-weight: bold;">{}</span>',
            PROCESSING_COLORS.get(obj.processing_status, "#6b7280"),
            obj.get_processing_status_display(),
        )
    processing_status_display.short_description = _("Processing")
    processing_status_display.admin_order_field = "processing_status"
