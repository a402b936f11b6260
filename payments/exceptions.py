"""Error taxonomy for the payment and settlement core.

Each error knows how it should surface over HTTP and what the user can do
about it: fix the input, try again as-is, or contact support.
"""

RETRY_WITH_CHANGES = "retry_with_changes"
RETRY = "retry"
CONTACT_SUPPORT = "contact_support"


class PaymentError(Exception):
    http_status = 500
    user_action = CONTACT_SUPPORT


class ValidationError(PaymentError):
    """Bad input. Raised before any side effect."""
    http_status = 400
    user_action = RETRY_WITH_CHANGES


class InvalidAmount(ValidationError):
    pass


class NotFound(PaymentError):
    http_status = 404
    user_action = RETRY_WITH_CHANGES


class GatewayError(PaymentError):
    user_action = RETRY


class GatewayRejected(GatewayError):
    """The gateway answered and declined the request."""
    http_status = 502


class GatewayUnreachable(GatewayError):
    """Transport-level failure talking to the gateway; may be transient."""
    http_status = 503


class StateConflict(PaymentError):
    """The operation contradicts a state that is already terminal."""
    http_status = 409
    user_action = CONTACT_SUPPORT


class PreconditionFailed(PaymentError):
    """Fulfillment transition attempted without a successful payment."""
    http_status = 409
    user_action = CONTACT_SUPPORT
