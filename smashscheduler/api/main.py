from django.conf import settings
from django.http import HttpRequest
from ninja import NinjaAPI
from ninja.errors import ValidationError

from smashscheduler.api.auth import JWTAuth
from smashscheduler.api.routers.billing import router as billing_router
from smashscheduler.billing.exceptions import BillingError

# Create the API instance
api = NinjaAPI(
    title="SmashScheduler API",
    version="1.0.0",
    description="API for SmashScheduler club scheduling",
    auth=JWTAuth(),
    docs_url="/docs/",
)


# Error handlers
@api.exception_handler(BillingError)
def billing_error_handler(request: HttpRequest, exc: BillingError):
    return api.create_response(
        request,
        {"error": exc.code, "detail": exc.message},
        status=exc.status_code,
    )


@api.exception_handler(ValidationError)
def validation_error_handler(request: HttpRequest, exc: ValidationError):
    return api.create_response(
        request,
        {"error": "Validation Error", "detail": exc.errors},
        status=400,
    )


@api.exception_handler(Exception)
def generic_exception_handler(request: HttpRequest, exc: Exception):
    if settings.DEBUG:
        return api.create_response(
            request,
            {"error": "Internal Server Error", "detail": str(exc)},
            status=500,
        )
    else:
        return api.create_response(
            request,
            {"error": "Internal Server Error", "detail": "An unexpected error occurred"},
            status=500,
        )


# Add routers
api.add_router("/billing", billing_router, tags=["Billing"])


# Health check endpoint
@api.get("/health", auth=None, tags=["System"])
def health_check(request):
    return {"status": "healthy", "version": "1.0.0"}
