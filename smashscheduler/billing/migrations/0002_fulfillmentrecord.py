import uuid

import django.db.models.deletion
from django.db import migrations, models


def backfill_records(apps, schema_editor):
    Subscription = apps.get_model("billing", "Subscription")
    FulfillmentRecord = apps.get_model("billing", "FulfillmentRecord")

    subscriptions = Subscription.objects.exclude(stripe_subscription_id__isnull=True).exclude(
        stripe_subscription_id=""
    )
    FulfillmentRecord.objects.bulk_create(
        [
            FulfillmentRecord(
                stripe_subscription_id=subscription.stripe_subscription_id,
                intent="unknown",
                club_id=subscription.club_id,
                subscription_id=subscription.pk,
            )
            for subscription in subscriptions
        ],
        ignore_conflicts=True,
    )


class Migration(migrations.Migration):

    dependencies = [
        ("clubs", "0001_initial"),
        ("billing", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="FulfillmentRecord",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "stripe_subscription_id",
                    models.CharField(help_text="Stripe Subscription ID that was fulfilled", max_length=255, unique=True),
                ),
                ("checkout_session_id", models.CharField(blank=True, max_length=255)),
                ("intent", models.CharField(max_length=20)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "club",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="fulfillment_records",
                        to="clubs.club",
                    ),
                ),
                (
                    "subscription",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="fulfillment_records",
                        to="billing.subscription",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.RunPython(backfill_records, migrations.RunPython.noop),
    ]
