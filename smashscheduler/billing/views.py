import logging

from django.http import HttpResponse
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from .exceptions import BillingError
from .exceptions import ValidationError
from .services import WebhookService

logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def stripe_webhook(request):
    """
    Handle Stripe webhook events.

    Any verified event is acknowledged with 200, including duplicates and
    events that change nothing. Processing failures answer 500 so Stripe
    redelivers the event.
    """
    try:
        outcome = WebhookService.handle(request.body, request.META.get("HTTP_STRIPE_SIGNATURE"))
    except ValidationError as e:
        logger.warning(f"Rejected Stripe webhook: {e}")
        return HttpResponse(status=400)
    except BillingError as e:
        logger.error(f"Error processing Stripe webhook: {e}")
        return HttpResponse(status=500)

    return JsonResponse({"received": True, "outcome": outcome})
