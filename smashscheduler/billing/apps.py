from django.apps import AppConfig
from django.utils.translation import gettext_lazy as _


class BillingConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "smashscheduler.billing"
    verbose_name = _("Billing")

    def ready(self):
        self._configure_stripe()

    def _configure_stripe(self):
        """Configure Stripe SDK with project settings."""
        import stripe
        from django.conf import settings

        stripe.api_key = getattr(settings, "STRIPE_SECRET_KEY", "")
        # Pin the API version so session and subscription payloads keep their shape
        stripe.api_version = getattr(settings, "STRIPE_API_VERSION", None) or stripe.api_version
