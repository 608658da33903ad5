from __future__ import annotations


class RegistrationError(Exception):
    """Base for every failure surfaced to callers.

    ``message`` is shown to the user as-is, so keep it to one plain sentence.
    """

    status_code = 500
    default_message = "Something went wrong. Please try again later."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationFailed(RegistrationError):
    status_code = 400
    default_message = "Invalid request."


class Unauthorized(RegistrationError):
    status_code = 401
    default_message = "Invalid or expired token."


class Forbidden(RegistrationError):
    status_code = 403
    default_message = "You are not allowed to do that."


class NotFound(RegistrationError):
    status_code = 404
    default_message = "Not found."


class Conflict(RegistrationError):
    status_code = 409
    default_message = "Already registered."


class RateLimited(RegistrationError):
    status_code = 429
    default_message = "Too many requests. Please try again later."


class UpstreamUnavailable(RegistrationError):
    status_code = 502
    default_message = "A required service is unavailable. Please try again later."


class InternalError(RegistrationError):
    status_code = 500
