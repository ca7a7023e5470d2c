from .client import BaseRosterClient, RosterHandshake, ROSTER_COLUMNS
from .sheets import SheetsRosterClient
from .error_handler import (
    RosterError,
    RosterNotFoundError,
    RosterAuthError,
    RosterRateLimitError,
    RosterNetworkError,
    RosterErrorHandler,
)

__all__ = [
    "BaseRosterClient",
    "RosterHandshake",
    "ROSTER_COLUMNS",
    "SheetsRosterClient",
    "RosterError",
    "RosterNotFoundError",
    "RosterAuthError",
    "RosterRateLimitError",
    "RosterNetworkError",
    "RosterErrorHandler",
]
