"""
Tests for the Stripe webhook endpoint
"""

from unittest.mock import patch

import stripe
from django.test import TestCase
from django.urls import reverse

from smashscheduler.billing.models import BillingEventLog
from smashscheduler.billing.models import Subscription
from smashscheduler.billing.plans import PlanTier
from smashscheduler.billing.tests.utils import checkout_session
from smashscheduler.billing.tests.utils import new_club_metadata
from smashscheduler.billing.tests.utils import webhook_event
from smashscheduler.clubs.models import Club
from smashscheduler.clubs.models import ClubOrganiser
from smashscheduler.users.models import User


@patch("stripe.Webhook.construct_event")
class StripeWebhookTest(TestCase):
    def setUp(self):
        self.url = reverse("billing:stripe_webhook")
        self.user = User.objects.create_user(
            username="organiser",
            email="organiser@example.com",
            password="testpass123",
        )

    def _post(self, payload, signature="t=1,v1=signature"):
        extra = {"HTTP_STRIPE_SIGNATURE": signature} if signature else {}
        return self.client.post(self.url, data=payload, content_type="application/json", **extra)

    def _pro_club(self, stripe_subscription_id="sub_1"):
        club = Club.objects.create(name="Sunday Smashers", created_by=self.user)
        ClubOrganiser.objects.create(user=self.user, club=club)
        subscription = Subscription.objects.create(
            club=club,
            plan_type=PlanTier.PRO,
            stripe_subscription_id=stripe_subscription_id,
        )
        return subscription

    def test_invalid_signature(self, mock_construct):
        mock_construct.side_effect = stripe.SignatureVerificationError("Bad signature", "t=1,v1=signature")

        response = self._post(webhook_event("checkout.session.completed", {"id": "cs_test123"}))

        self.assertEqual(response.status_code, 400)
        self.assertFalse(BillingEventLog.objects.exists())

    def test_missing_signature(self, mock_construct):
        response = self._post(webhook_event("checkout.session.completed", {"id": "cs_test123"}), signature=None)

        self.assertEqual(response.status_code, 400)
        mock_construct.assert_not_called()

    def test_get_not_allowed(self, mock_construct):
        response = self.client.get(self.url)

        self.assertEqual(response.status_code, 405)

    @patch("stripe.checkout.Session.retrieve")
    def test_checkout_completed_fulfils(self, mock_retrieve, mock_construct):
        mock_retrieve.return_value = checkout_session(metadata=new_club_metadata(self.user))
        payload = webhook_event("checkout.session.completed", {"id": "cs_test123", "mode": "subscription"})

        response = self._post(payload)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["received"], True)
        mock_construct.assert_called_once_with(payload.encode(), "t=1,v1=signature", "whsec_test_dummy")

        subscription = Subscription.objects.get()
        self.assertEqual(subscription.club.name, "Sunday Smashers")
        event = BillingEventLog.objects.get(stripe_event_id="evt_test123")
        self.assertTrue(event.is_processed)
        self.assertEqual(event.subscription, subscription)

    @patch("stripe.checkout.Session.retrieve")
    def test_duplicate_event_is_acknowledged(self, mock_retrieve, mock_construct):
        mock_retrieve.return_value = checkout_session(metadata=new_club_metadata(self.user))
        payload = webhook_event("checkout.session.completed", {"id": "cs_test123"})

        self._post(payload)
        response = self._post(payload)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["outcome"], "duplicate")
        self.assertEqual(mock_retrieve.call_count, 1)
        self.assertEqual(Club.objects.count(), 1)

    @patch("stripe.checkout.Session.retrieve")
    def test_completed_and_async_events_fulfil_once(self, mock_retrieve, mock_construct):
        mock_retrieve.return_value = checkout_session(metadata=new_club_metadata(self.user))

        self._post(webhook_event("checkout.session.completed", {"id": "cs_test123"}, event_id="evt_1"))
        response = self._post(
            webhook_event("checkout.session.async_payment_succeeded", {"id": "cs_test123"}, event_id="evt_2")
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(Subscription.objects.count(), 1)

    @patch("stripe.checkout.Session.retrieve")
    def test_unpaid_checkout_is_acknowledged(self, mock_retrieve, mock_construct):
        mock_retrieve.return_value = checkout_session(
            payment_status="unpaid",
            metadata=new_club_metadata(self.user),
        )

        response = self._post(webhook_event("checkout.session.completed", {"id": "cs_test123"}))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["outcome"], "ignored")
        self.assertFalse(Club.objects.exists())
        event = BillingEventLog.objects.get(stripe_event_id="evt_test123")
        self.assertEqual(event.processing_status, BillingEventLog.ProcessingStatus.IGNORED)

    @patch("stripe.checkout.Session.retrieve")
    def test_invalid_intent_is_acknowledged(self, mock_retrieve, mock_construct):
        mock_retrieve.return_value = checkout_session(metadata={"intent": "gift"})

        response = self._post(webhook_event("checkout.session.completed", {"id": "cs_test123"}))

        self.assertEqual(response.status_code, 200)
        self.assertFalse(Club.objects.exists())

    @patch("stripe.checkout.Session.retrieve")
    def test_processor_failure_is_retried(self, mock_retrieve, mock_construct):
        mock_retrieve.side_effect = stripe.APIConnectionError("Network down")
        payload = webhook_event("checkout.session.completed", {"id": "cs_test123"})

        response = self._post(payload)

        self.assertEqual(response.status_code, 500)
        event = BillingEventLog.objects.get(stripe_event_id="evt_test123")
        self.assertEqual(event.processing_status, BillingEventLog.ProcessingStatus.FAILED)
        self.assertEqual(event.retry_count, 1)

        # Stripe redelivers the same event
        mock_retrieve.side_effect = None
        mock_retrieve.return_value = checkout_session(metadata=new_club_metadata(self.user))
        response = self._post(payload)

        self.assertEqual(response.status_code, 200)
        event.refresh_from_db()
        self.assertTrue(event.is_processed)
        self.assertEqual(Club.objects.count(), 1)

    def test_non_subscription_checkout_is_ignored(self, mock_construct):
        response = self._post(webhook_event("checkout.session.completed", {"id": "cs_test123", "mode": "payment"}))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["outcome"], "ignored")

    def test_subscription_deleted(self, mock_construct):
        subscription = self._pro_club()

        response = self._post(webhook_event("customer.subscription.deleted", {"id": "sub_1", "status": "canceled"}))

        self.assertEqual(response.status_code, 200)
        subscription.refresh_from_db()
        self.assertEqual(subscription.status, Subscription.Status.CANCELLED)

    def test_subscription_updated(self, mock_construct):
        subscription = self._pro_club()

        response = self._post(webhook_event(
            "customer.subscription.updated",
            {"id": "sub_1", "status": "unpaid", "items": {"data": [{"current_period_end": 1893456000}]}},
        ))

        self.assertEqual(response.status_code, 200)
        subscription.refresh_from_db()
        self.assertEqual(subscription.status, Subscription.Status.EXPIRED)
        self.assertEqual(int(subscription.current_period_end.timestamp()), 1893456000)

    def test_invoice_payment_failed(self, mock_construct):
        subscription = self._pro_club()
        invoice = {
            "id": "in_1",
            "parent": {"subscription_details": {"subscription": "sub_1"}},
        }

        response = self._post(webhook_event("invoice.payment_failed", invoice))

        self.assertEqual(response.status_code, 200)
        subscription.refresh_from_db()
        self.assertEqual(subscription.status, Subscription.Status.EXPIRED)

    def test_invoice_payment_failed_legacy_shape(self, mock_construct):
        subscription = self._pro_club()

        self._post(webhook_event("invoice.payment_failed", {"id": "in_1", "subscription": "sub_1"}))

        subscription.refresh_from_db()
        self.assertEqual(subscription.status, Subscription.Status.EXPIRED)

    def test_status_event_for_unknown_subscription(self, mock_construct):
        response = self._post(webhook_event("customer.subscription.deleted", {"id": "sub_unknown"}))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["outcome"], "ignored")

    def test_unhandled_event(self, mock_construct):
        response = self._post(webhook_event("customer.created", {"id": "cus_1"}))

        self.assertEqual(response.status_code, 200)
        event = BillingEventLog.objects.get(stripe_event_id="evt_test123")
        self.assertEqual(event.processing_status, BillingEventLog.ProcessingStatus.IGNORED)
