from django.urls import path

from . import views

app_name = "billing"

urlpatterns = [
    # Webhook endpoint for Stripe to call
    path(
        "stripe/webhook/",
        views.stripe_webhook,
        name="stripe_webhook",
    ),
]
