"""
Exception hierarchy for the payment core.

Every error carries a user-facing ``message`` and a ``context`` dict that is
logged but never returned to API callers. ``status_code`` is read by the
exception handler registered in ``wedding_payments.main``.
"""

from typing import Any, Dict, Optional


class PaymentError(Exception):
    status_code = 500
    error = "payment_error"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(PaymentError):
    """Malformed or missing caller input."""

    status_code = 400
    error = "validation_error"

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class AuthenticationError(PaymentError):
    """Webhook signature (or bearer token) could not be verified."""

    status_code = 401
    error = "authentication_error"


class AuthorizationError(PaymentError):
    """Caller is authenticated but has no rights over the resource."""

    status_code = 403
    error = "authorization_error"


class NotFoundError(PaymentError):
    status_code = 404
    error = "not_found"

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class InvalidTransitionError(PaymentError):
    """A terminal payment was asked to move to a different status."""

    status_code = 409
    error = "invalid_transition"


class ConfigurationError(PaymentError):
    """
    Platform setup is incomplete (missing env vars, admin or vendor
    sub-account). Operator-actionable, not the caller's fault.
    """

    status_code = 500
    error = "configuration_error"


class ExternalProviderError(PaymentError):
    """The payment processor failed, rejected the request or timed out."""

    status_code = 502
    error = "external_provider_error"
