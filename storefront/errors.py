"""Error taxonomy shared by services and blueprints.

Each error carries the HTTP status the blueprints answer with and a
client-safe message. Operator detail stays in the exception args (and the
logs), never in the response body.
"""


class StorefrontError(Exception):
    status_code = 500
    public_message = "Something went wrong. Please try again."

    def to_dict(self):
        return {"error": self.public_message}


class ValidationError(StorefrontError):
    """Bad caller input. The message names the offending field."""

    status_code = 400

    def __init__(self, field, message=None):
        self.field = field
        self.message = message or f"Invalid {field}."
        super().__init__(self.message)

    @property
    def public_message(self):
        return self.message

    def to_dict(self):
        return {"error": self.message, "field": self.field}


class ConfigurationError(StorefrontError):
    """Missing catalog entry or secret. A deployment defect."""

    status_code = 500


class AuthenticationError(StorefrontError):
    """Bad webhook signature or invalid/expired portal token."""

    status_code = 401
    public_message = "Invalid or expired link."


class WebhookSignatureError(AuthenticationError):
    status_code = 400
    public_message = "Invalid signature"


class NotFoundError(StorefrontError):
    status_code = 404
    public_message = "Not found."

    def __init__(self, message=None):
        if message:
            self.public_message = message
        super().__init__(message or self.public_message)


class UpstreamError(StorefrontError):
    """A Stripe call failed. Safe for the caller to retry."""

    status_code = 502
    public_message = "Payment provider unavailable. Please try again."
