"""Builders for Stripe payloads shaped like the API returns them."""

import json

PERIOD_END_TS = 1893456000  # 2030-01-01T00:00:00Z


def stripe_subscription(subscription_id="sub_test123", status="active", customer="cus_test123"):
    return {
        "id": subscription_id,
        "object": "subscription",
        "status": status,
        "customer": customer,
        "items": {"data": [{"current_period_end": PERIOD_END_TS}]},
    }


def checkout_session(
    session_id="cs_test123",
    payment_status="paid",
    metadata=None,
    subscription=None,
    customer="cus_test123",
):
    return {
        "id": session_id,
        "object": "checkout.session",
        "mode": "subscription",
        "payment_status": payment_status,
        "metadata": metadata or {},
        "customer": customer,
        "subscription": subscription if subscription is not None else stripe_subscription(),
    }


def new_club_metadata(user, club_name="Sunday Smashers"):
    return {"intent": "new", "user_id": str(user.pk), "club_name": club_name}


def trial_metadata(user, club_name="Sunday Smashers"):
    return {"intent": "trial", "user_id": str(user.pk), "club_name": club_name}


def upgrade_metadata(user, club):
    return {"intent": "upgrade", "user_id": str(user.pk), "club_id": str(club.pk)}


def webhook_event(event_type, data_object, event_id="evt_test123"):
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": data_object},
    })
