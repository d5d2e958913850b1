"""
Error taxonomy shared by both data-access backends.

Route handlers turn a RentalError into an HTTP error with its status code;
anything else is reported as a generic 500.
"""

# Prefix for messages of failures raised by the document backend
DOCUMENT_ERROR_PREFIX = "NoSQL: "


class RentalError(Exception):
    """Base class for errors that carry their own HTTP status."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(RentalError):
    """Missing or malformed required input."""
    status_code = 400


class NotFoundOrInactive(RentalError):
    """Booking does not exist, belongs to someone else, or already started."""
    status_code = 404


class BusinessRuleViolation(RentalError):
    """Input is well-formed but breaks a booking rule."""
    status_code = 400


class SeedConflict(RentalError):
    status_code = 409


class BackendUnavailable(RentalError):
    """The data store could not be reached or did not settle an update."""
    status_code = 500
