class EntitlementException(Exception):
    """Base error for the enrollment/payment core, rendered as JSON by main.py."""

    error_type = "entitlement_error"

    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class ValidationError(EntitlementException):
    error_type = "validation_error"

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message, status_code)


class NotFound(EntitlementException):
    error_type = "not_found"

    def __init__(self, message: str):
        super().__init__(message, 404)


class AlreadyEnrolled(EntitlementException):
    error_type = "already_enrolled"

    def __init__(self, message: str = "You are already enrolled."):
        super().__init__(message, 409)


class AlreadyActive(EntitlementException):
    error_type = "already_active"

    def __init__(self, message: str = "You already have active access to this course."):
        super().__init__(message, 409)


class InvalidSignature(EntitlementException):
    error_type = "invalid_signature"

    def __init__(self, message: str = "Invalid signature"):
        super().__init__(message, 400)


class PaymentGatewayError(EntitlementException):
    error_type = "payment_gateway_error"

    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message, status_code)


class GatewayCustomerExists(PaymentGatewayError):
    """Raised by the gateway adapter when a customer with the same email exists."""

    error_type = "gateway_customer_exists"


class PersistenceError(EntitlementException):
    error_type = "persistence_error"

    def __init__(self, message: str = "Database error occurred"):
        super().__init__(message, 500)


class WebhookPayloadError(EntitlementException):
    error_type = "webhook_payload_error"

    def __init__(self, message: str = "Unable to parse webhook payload"):
        super().__init__(message, 500)
