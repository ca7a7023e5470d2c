"""
Domain exceptions for membership records and roster sync runs.
"""


class SyncError(Exception):
    """Base exception for roster sync errors."""
    pass


class SyncAlreadyRunningError(SyncError):
    """Raised when a sync run is requested while another one is active."""

    def __init__(self, message: str = "Sync already in progress"):
        super().__init__(message)


class LocalStoreUnavailableError(SyncError):
    """Raised when the local member database cannot be reached."""
    pass


class MemberValidationError(ValueError):
    """Base exception for member records that cannot be persisted."""
    pass


class MissingIdentifierError(MemberValidationError):
    """Raised for a member with neither a national ID nor a registration number."""

    def __init__(self, full_name: str = ""):
        label = f"{full_name}: " if full_name else ""
        super().__init__(f"{label}No unique identifier provided")


class InvalidNationalIdError(MemberValidationError):
    """Raised for a national ID that is not an 11 digit number."""

    def __init__(self, national_id: str):
        super().__init__(f"Invalid national ID '{national_id}': expected 11 digits")
        self.national_id = national_id


class DuplicateNaturalKeyError(MemberValidationError):
    """Raised when creating a member whose natural key is already taken."""

    def __init__(self, field: str, value: str):
        super().__init__(f"A member with {field}={value} already exists")
        self.field = field
        self.value = value


class SyncTimeoutError(SyncError):
    """Raised when the full-sync attempts exceed the run deadline."""

    def __init__(self, timeout_seconds: float):
        super().__init__(f"Full sync exceeded deadline of {timeout_seconds}s")
        self.timeout_seconds = timeout_seconds
