"""
Billing error taxonomy.

Each error carries the HTTP status an endpoint answers with when it surfaces
the error to a caller. A duplicate fulfillment is not an error and has no
class here; see FulfillmentResult.created.
"""


class BillingError(Exception):
    """Base exception for billing errors"""

    status_code = 500
    code = "billing_error"

    def __init__(self, message=None):
        super().__init__(message or self.default_message())

    @classmethod
    def default_message(cls):
        return cls.__doc__.strip() if cls.__doc__ else cls.code

    @property
    def message(self):
        return str(self)


class Unauthenticated(BillingError):
    """Authentication required"""

    status_code = 401
    code = "unauthenticated"


class Unauthorized(BillingError):
    """Caller is not allowed to act on this club or session"""

    status_code = 403
    code = "unauthorized"


class ValidationError(BillingError):
    """Missing or malformed field"""

    status_code = 400
    code = "validation_error"


class InvalidSession(BillingError):
    """Checkout session could not be resolved"""

    status_code = 400
    code = "invalid_session"


class InvalidIntent(InvalidSession):
    """Checkout session metadata does not describe a known intent"""

    code = "invalid_intent"


class PaymentIncomplete(BillingError):
    """Payment for this checkout session is not complete yet"""

    status_code = 402
    code = "payment_incomplete"


class NotUpgradeable(BillingError):
    """Club has no active free subscription to upgrade"""

    status_code = 403
    code = "not_upgradeable"


class AlreadyTrialled(BillingError):
    """You have already used your free trial"""

    status_code = 403
    code = "already_trialled"


class ProcessorError(BillingError):
    """Payment processor request failed"""

    status_code = 502
    code = "processor_error"


class FulfillmentError(BillingError):
    """Checkout fulfillment failed"""

    status_code = 500
    code = "fulfillment_failed"
