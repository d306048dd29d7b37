"""
Tests for billing models
"""

from datetime import timedelta

from django.db import IntegrityError
from django.db import transaction
from django.test import TestCase
from django.utils import timezone

from smashscheduler.billing.models import BillingEventLog
from smashscheduler.billing.models import FulfillmentRecord
from smashscheduler.billing.models import Subscription
from smashscheduler.billing.plans import PlanTier
from smashscheduler.clubs.models import Club
from smashscheduler.clubs.models import ClubOrganiser
from smashscheduler.users.models import User


class SubscriptionModelTest(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(
            username="organiser",
            email="organiser@example.com",
            password="testpass123",
        )
        self.club = Club.objects.create(name="Sunday Smashers", created_by=self.user)
        ClubOrganiser.objects.create(user=self.user, club=self.club)

    def test_one_active_row_per_club(self):
        Subscription.objects.create(club=self.club, status=Subscription.Status.ACTIVE)

        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Subscription.objects.create(club=self.club, status=Subscription.Status.TRIALLING)

    def test_history_rows_do_not_count_as_active(self):
        Subscription.objects.create(club=self.club, status=Subscription.Status.CANCELLED)
        Subscription.objects.create(club=self.club, status=Subscription.Status.EXPIRED)
        Subscription.objects.create(club=self.club, status=Subscription.Status.ACTIVE)

        self.assertEqual(Subscription.objects.active_like().for_club(self.club).count(), 1)

    def test_external_subscription_id_is_unique(self):
        other_club = Club.objects.create(name="Other")
        Subscription.objects.create(club=self.club, stripe_subscription_id="sub_1")

        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Subscription.objects.create(club=other_club, stripe_subscription_id="sub_1")

    def test_many_free_rows_may_have_no_external_id(self):
        other_club = Club.objects.create(name="Other")
        Subscription.objects.create(club=self.club)
        Subscription.objects.create(club=other_club)

        self.assertEqual(Subscription.objects.filter(stripe_subscription_id__isnull=True).count(), 2)

    def test_current_for_club_prefers_active_row(self):
        active = Subscription.objects.create(club=self.club, status=Subscription.Status.ACTIVE)
        Subscription.objects.create(club=self.club, status=Subscription.Status.CANCELLED)

        self.assertEqual(Subscription.objects.current_for_club(self.club), active)

    def test_current_for_club_falls_back_to_latest_row(self):
        older = Subscription.objects.create(club=self.club, status=Subscription.Status.EXPIRED)
        latest = Subscription.objects.create(club=self.club, status=Subscription.Status.CANCELLED)
        Subscription.objects.filter(pk=older.pk).update(updated_at=timezone.now() - timedelta(days=1))

        self.assertEqual(Subscription.objects.current_for_club(self.club), latest)

    def test_exists_for_external_id(self):
        Subscription.objects.create(club=self.club, stripe_subscription_id="sub_1")

        self.assertTrue(Subscription.objects.exists_for_external_id("sub_1"))
        self.assertFalse(Subscription.objects.exists_for_external_id("sub_2"))
        self.assertFalse(Subscription.objects.exists_for_external_id(None))

    def test_mark_pro_then_free_keeps_pro_since(self):
        subscription = Subscription.objects.create(club=self.club)
        subscription.mark_pro(
            stripe_subscription_id="sub_1",
            stripe_customer_id="cus_1",
            status=Subscription.Status.ACTIVE,
            current_period_end=timezone.now() + timedelta(days=30),
        )
        subscription.save()
        pro_since = subscription.pro_since
        self.assertIsNotNone(pro_since)

        subscription.mark_free()
        subscription.save()
        subscription.refresh_from_db()

        self.assertEqual(subscription.plan_type, PlanTier.FREE)
        self.assertEqual(subscription.status, Subscription.Status.ACTIVE)
        self.assertIsNone(subscription.stripe_subscription_id)
        self.assertIsNone(subscription.stripe_customer_id)
        self.assertIsNone(subscription.current_period_end)
        self.assertEqual(subscription.pro_since, pro_since)

    def test_ever_pro_for_user(self):
        subscription = Subscription.objects.create(club=self.club)
        self.assertFalse(Subscription.objects.ever_pro_for_user(self.user))

        subscription.pro_since = timezone.now()
        subscription.save()
        self.assertTrue(Subscription.objects.ever_pro_for_user(self.user))

    def test_status_from_processor(self):
        self.assertEqual(Subscription.status_from_processor("trialing"), Subscription.Status.TRIALLING)
        self.assertEqual(Subscription.status_from_processor("canceled"), Subscription.Status.CANCELLED)
        self.assertEqual(Subscription.status_from_processor("unpaid"), Subscription.Status.EXPIRED)
        self.assertIsNone(Subscription.status_from_processor("past_due"))

        self.assertEqual(Subscription.fulfilled_status("trialing"), Subscription.Status.TRIALLING)
        self.assertEqual(Subscription.fulfilled_status("active"), Subscription.Status.ACTIVE)
        self.assertEqual(Subscription.fulfilled_status(None), Subscription.Status.ACTIVE)

    def test_is_upgradeable(self):
        subscription = Subscription(club=self.club)
        self.assertTrue(subscription.is_upgradeable)

        subscription.plan_type = PlanTier.PRO
        self.assertFalse(subscription.is_upgradeable)

        subscription.plan_type = PlanTier.FREE
        subscription.status = Subscription.Status.CANCELLED
        self.assertFalse(subscription.is_upgradeable)

    def test_days_until_renewal(self):
        subscription = Subscription(club=self.club)
        self.assertIsNone(subscription.days_until_renewal)

        subscription.current_period_end = timezone.now() + timedelta(days=10, hours=1)
        self.assertEqual(subscription.days_until_renewal, 10)


class FulfillmentRecordTest(TestCase):
    def setUp(self):
        self.club = Club.objects.create(name="Sunday Smashers")
        self.subscription = Subscription.objects.create(
            club=self.club,
            plan_type=PlanTier.PRO,
            stripe_subscription_id="sub_1",
        )

    def test_record_links_club_and_subscription(self):
        record = FulfillmentRecord.record(
            stripe_subscription_id="sub_1",
            checkout_session_id="cs_1",
            intent="new",
            subscription=self.subscription,
        )

        self.assertEqual(record.club, self.club)
        self.assertEqual(record.subscription, self.subscription)

    def test_one_record_per_external_subscription(self):
        FulfillmentRecord.record(
            stripe_subscription_id="sub_1",
            checkout_session_id="cs_1",
            intent="new",
            subscription=self.subscription,
        )

        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                FulfillmentRecord.record(
                    stripe_subscription_id="sub_1",
                    checkout_session_id="cs_2",
                    intent="new",
                    subscription=self.subscription,
                )

    def test_record_outlives_downgrade_and_club_deletion(self):
        FulfillmentRecord.record(
            stripe_subscription_id="sub_1",
            checkout_session_id="cs_1",
            intent="new",
            subscription=self.subscription,
        )

        self.subscription.mark_free()
        self.subscription.save()
        self.assertEqual(FulfillmentRecord.objects.get().stripe_subscription_id, "sub_1")

        self.club.delete()
        record = FulfillmentRecord.objects.get()
        self.assertIsNone(record.club)
        self.assertIsNone(record.subscription)


class BillingEventLogTest(TestCase):
    def test_log_stripe_event_is_deduplicated(self):
        first, created = BillingEventLog.log_stripe_event("evt_1", "invoice.payment_failed", {"a": 1})
        second, created_again = BillingEventLog.log_stripe_event("evt_1", "invoice.payment_failed", {"a": 2})

        self.assertTrue(created)
        self.assertFalse(created_again)
        self.assertEqual(first.pk, second.pk)
        self.assertEqual(second.data_json, {"a": 1})

    def test_failure_and_retry(self):
        event, _ = BillingEventLog.log_stripe_event("evt_1", "checkout.session.completed", {})
        event.mark_failed("Stripe unavailable")

        self.assertTrue(event.can_retry())
        self.assertEqual(list(BillingEventLog.get_failed_events()), [event])

        event.mark_processed()
        self.assertTrue(event.is_processed)
        self.assertEqual(event.error_message, "")
        self.assertFalse(BillingEventLog.get_failed_events().exists())

    def test_internal_events_are_processed(self):
        event = BillingEventLog.log_internal_event(
            BillingEventLog.EventType.CHECKOUT_SESSION_CREATED,
            {"checkout_session_id": "cs_1"},
        )
        self.assertIsNone(event.stripe_event_id)
        self.assertTrue(event.is_processed)
