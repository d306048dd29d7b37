"""
Admin site for SmashScheduler support staff: users, clubs and billing.
"""
from django.urls import reverse_lazy
from django.utils.translation import gettext_lazy as _


def _section(title, *items):
    return {
        "title": title,
        "separator": True,
        "collapsible": True,
        "items": [
            {"title": label, "icon": icon, "link": reverse_lazy(url_name)}
            for label, icon, url_name in items
        ],
    }


UNFOLD = {
    "SITE_TITLE": "SmashScheduler",
    "SITE_HEADER": "SmashScheduler",
    "SITE_SUBHEADER": "Billing administration",
    "DASHBOARD_CALLBACK": "config.settings.unfold.dashboard_callback",
    "SIDEBAR": {
        "show_search": True,
        "navigation": [
            _section(
                _("People"),
                (_("Users"), "people", "admin:users_user_changelist"),
            ),
            _section(
                _("Clubs"),
                (_("Clubs"), "groups", "admin:clubs_club_changelist"),
                (_("Organisers"), "manage_accounts", "admin:clubs_cluborganiser_changelist"),
            ),
            _section(
                _("Billing"),
                (_("Subscriptions"), "credit_card", "admin:billing_subscription_changelist"),
                (_("Fulfilled checkouts"), "task_alt", "admin:billing_fulfillmentrecord_changelist"),
                (_("Billing Events"), "receipt_long", "admin:billing_billingeventlog_changelist"),
            ),
        ],
    },
}


def dashboard_callback(request, context):
    """Plan and billing-health counts for the admin index."""
    from smashscheduler.billing.models import BillingEventLog
    from smashscheduler.billing.models import Subscription
    from smashscheduler.billing.plans import PlanTier
    from smashscheduler.clubs.models import Club

    active_like = Subscription.objects.active_like()
    context.update(
        total_clubs=Club.objects.count(),
        active_pro_subscriptions=active_like.filter(plan_type=PlanTier.PRO).count(),
        active_free_subscriptions=active_like.filter(plan_type=PlanTier.FREE).count(),
        trialling_subscriptions=active_like.filter(status=Subscription.Status.TRIALLING).count(),
        failed_billing_events=BillingEventLog.objects.filter(
            processing_status=BillingEventLog.ProcessingStatus.FAILED
        ).count(),
        recent_clubs=Club.objects.order_by("-created_at")[:5],
    )
    return context
