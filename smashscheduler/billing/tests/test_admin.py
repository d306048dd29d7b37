from django.test import RequestFactory
from django.test import TestCase
from django.urls import reverse

from config.settings.unfold import dashboard_callback
from smashscheduler.billing.models import BillingEventLog
from smashscheduler.billing.models import Subscription
from smashscheduler.billing.plans import PlanTier
from smashscheduler.clubs.models import Club
from smashscheduler.users.models import User


class BillingAdminTest(TestCase):
    def setUp(self):
        self.admin = User.objects.create_superuser(
            username="admin",
            email="admin@example.com",
            password="testpass123",
        )
        self.client.force_login(self.admin)

        self.pro_club = Club.objects.create(name="Pro Club")
        self.free_club = Club.objects.create(name="Free Club")
        self.trial_club = Club.objects.create(name="Trial Club")
        Subscription.objects.create(club=self.pro_club, plan_type=PlanTier.PRO, stripe_subscription_id="sub_1")
        Subscription.objects.create(club=self.free_club)
        Subscription.objects.create(
            club=self.trial_club,
            plan_type=PlanTier.PRO,
            status=Subscription.Status.TRIALLING,
            stripe_subscription_id="sub_2",
        )
        event, _ = BillingEventLog.log_stripe_event("evt_1", "checkout.session.completed", {})
        event.mark_failed("Stripe unavailable")

    def test_dashboard_callback(self):
        request = RequestFactory().get("/admin/")
        context = dashboard_callback(request, {})

        self.assertEqual(context["total_clubs"], 3)
        self.assertEqual(context["active_pro_subscriptions"], 2)
        self.assertEqual(context["active_free_subscriptions"], 1)
        self.assertEqual(context["trialling_subscriptions"], 1)
        self.assertEqual(context["failed_billing_events"], 1)
        self.assertEqual(len(context["recent_clubs"]), 3)

    def test_changelists_render(self):
        for name in (
            "admin:billing_subscription_changelist",
            "admin:billing_billingeventlog_changelist",
            "admin:billing_fulfillmentrecord_changelist",
            "admin:clubs_club_changelist",
        ):
            with self.subTest(name=name):
                response = self.client.get(reverse(name))
                self.assertEqual(response.status_code, 200)
