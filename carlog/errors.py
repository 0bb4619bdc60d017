"""Exception types raised by carlog."""


class CarlogError(Exception):
    """Base class for all carlog errors."""


class NotAuthenticatedError(CarlogError):
    """A backend operation was attempted without a valid session."""

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)


class BackendError(CarlogError):
    """The backend rejected or failed an operation."""


class RecordNotFoundError(BackendError):
    """No record with the given id exists."""

    def __init__(self, kind: str, record_id: str):
        super().__init__(f"{kind} '{record_id}' not found")
        self.kind = kind
        self.record_id = record_id


class ImportValidationError(CarlogError):
    """A backup payload failed validation; ``reason`` says why."""

    def __init__(self, reason: str):
        super().__init__(f"Invalid backup file: {reason}")
        self.reason = reason


class NothingToExportError(CarlogError):
    """An export was requested for a vehicle with no service history."""


class ReceiptTooLargeError(CarlogError):
    """A receipt file exceeds the upload size limit."""

    def __init__(self, name: str, size: int, limit: int):
        super().__init__(
            f"File {name} is too large ({size:,} bytes). Max {limit // (1024 * 1024)}MB."
        )
        self.name = name
        self.size = size
        self.limit = limit


class SignatureVerificationError(CarlogError):
    """A webhook payload did not carry a valid signature."""


class EmailDeliveryError(CarlogError):
    """The email provider refused or failed to send a message."""
