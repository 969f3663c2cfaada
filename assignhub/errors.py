class HubError(Exception):
    """Base class for failures surfaced to the caller as-is."""
    status_code = 400
    message = "Request failed"

    def __init__(self, message=None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class ValidationError(HubError):
    status_code = 400
    message = "Invalid request"


class NotAuthenticated(HubError):
    status_code = 401
    message = "Authentication required"


class AccessDenied(HubError):
    status_code = 403
    message = "Forbidden"


class NotFound(HubError):
    status_code = 404
    message = "Not found"


class UniqueViolation(HubError):
    status_code = 409
    message = "Duplicate record"


class ReferenceViolation(HubError):
    status_code = 409
    message = "Referenced record does not exist"


class ConstraintViolation(HubError):
    status_code = 409
    message = "Write violates a table constraint"
