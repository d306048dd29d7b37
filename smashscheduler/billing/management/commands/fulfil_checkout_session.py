from django.core.management.base import BaseCommand
from django.core.management.base import CommandError

from smashscheduler.billing.exceptions import BillingError
from smashscheduler.billing.services import FulfillmentService


class Command(BaseCommand):
    help = "Fulfil a completed Stripe checkout session, as the webhook would"

    def add_arguments(self, parser):
        parser.add_argument(
            "session_id",
            type=str,
            help="Stripe checkout session ID (cs_...)",
        )

    def handle(self, *args, **options):
        session_id = options["session_id"]

        try:
            result = FulfillmentService.fulfil(session_id)
        except BillingError as e:
            raise CommandError(f"Could not fulfil {session_id}: {e}")

        if result.created:
            self.stdout.write(
                self.style.SUCCESS(
                    f"Fulfilled {session_id}: club {result.club.name} ({result.club.slug}) "
                    f"is {result.subscription.plan_type}/{result.subscription.status}"
                )
            )
        else:
            club = f"{result.club.name} ({result.club.slug})" if result.club else "that no longer exists"
            self.stdout.write(self.style.WARNING(f"{session_id} was already fulfilled for club {club}"))
