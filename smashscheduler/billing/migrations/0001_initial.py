import uuid

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("clubs", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Subscription",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "plan_type",
                    models.CharField(choices=[("free", "Free"), ("pro", "Pro")], default="free", max_length=20),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("active", "Active"),
                            ("trialling", "Trialling"),
                            ("cancelled", "Cancelled"),
                            ("expired", "Expired"),
                        ],
                        default="active",
                        max_length=20,
                    ),
                ),
                (
                    "stripe_customer_id",
                    models.CharField(blank=True, help_text="Stripe Customer ID", max_length=255, null=True),
                ),
                (
                    "stripe_subscription_id",
                    models.CharField(
                        blank=True,
                        help_text="Stripe Subscription ID; the idempotency key for fulfillment",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "current_period_end",
                    models.DateTimeField(blank=True, help_text="End of current billing period", null=True),
                ),
                (
                    "pro_since",
                    models.DateTimeField(
                        blank=True,
                        help_text="First time this row reached the pro plan; never cleared",
                        null=True,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "club",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="subscriptions",
                        to="clubs.club",
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["status"], name="billing_sub_status_idx"),
                    models.Index(fields=["stripe_customer_id"], name="billing_sub_customer_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("status__in", ["active", "trialling"])),
                        fields=("club",),
                        name="billing_one_active_subscription_per_club",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="BillingEventLog",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "stripe_event_id",
                    models.CharField(
                        blank=True,
                        help_text="Stripe Event ID (null for internal events)",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                ("event_type", models.CharField(help_text="Type of billing event", max_length=64)),
                (
                    "processing_status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processed", "Processed"),
                            ("failed", "Failed"),
                            ("ignored", "Ignored"),
                        ],
                        default="pending",
                        max_length=20,
                    ),
                ),
                (
                    "processed_at",
                    models.DateTimeField(blank=True, help_text="When the event was successfully processed", null=True),
                ),
                (
                    "data_json",
                    models.JSONField(default=dict, help_text="Event payload from Stripe or internal event data"),
                ),
                ("error_message", models.TextField(blank=True, help_text="Error message if processing failed")),
                ("retry_count", models.IntegerField(default=0, help_text="Number of processing retry attempts")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "subscription",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="billing_events",
                        to="billing.subscription",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["event_type", "processing_status"], name="billing_evt_type_status_idx"),
                    models.Index(fields=["processing_status", "created_at"], name="billing_evt_status_created_idx"),
                ],
            },
        ),
    ]
