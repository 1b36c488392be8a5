class DomainError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = 400

    def __init__(self, message, status_code=None, payload=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        return {"error": self.message, **(self.payload or {})}


class AuthenticationFailure(DomainError):
    """Bad or missing webhook signature, missing session."""

    status_code = 401


class ValidationFailure(DomainError):
    """Malformed payload, invalid plan reference, missing required field."""

    status_code = 400


class LimitExceeded(DomainError):
    """Feature gate denial."""

    status_code = 403


class NotFound(DomainError):
    status_code = 404


class UpstreamFailure(DomainError):
    """Store or payment API call failed. Carries the upstream message."""

    status_code = 500
