"""
Roster client interface and the positional row layout shared by all clients.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional


# Column order of the external roster; existing spreadsheets depend on it.
ROSTER_COLUMNS = (
    "full_name",
    "national_id",
    "registration_number",
    "phone",
    "department",
    "payment_marker",
    "date",
)

Row = List[str]


@dataclass
class RosterHandshake:
    """Result of a lightweight roster initialization."""
    success: bool
    mock_mode: bool = False
    message: Optional[str] = None


class BaseRosterClient(ABC):
    """Base class for external roster implementations."""

    def __init__(self, default_range: str = "A:Z", header_rows: int = 1):
        self.default_range = default_range
        self.header_rows = header_rows
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @abstractmethod
    async def initialize(self) -> RosterHandshake:
        """Handshake with the roster without reading its contents."""
        pass

    @abstractmethod
    async def read(self, range_: Optional[str] = None) -> List[Row]:
        """Read all rows of ``range_`` (header rows included)."""
        pass

    @abstractmethod
    async def append(self, row: Row) -> None:
        """Append one row after the last populated row."""
        pass

    @abstractmethod
    async def update(self, range_: str, row: Row) -> None:
        """Overwrite the row at ``range_``."""
        pass

    async def close(self) -> None:
        """Release network resources."""
        self._initialized = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def data_rows(self, rows: List[Row]) -> List[Row]:
        """Drop the configured header rows."""
        return rows[self.header_rows:]

    async def search_member(
        self,
        national_id: Optional[str] = None,
        registration_number: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Find the first roster row matching either natural key.

        Returns:
            The matching row as a column dict plus its 1-based ``row_number``,
            or None when no row matches.
        """
        national_id = (national_id or "").strip()
        registration_number = (registration_number or "").strip()
        if not national_id and not registration_number:
            raise ValueError("national_id or registration_number is required")

        rows = await self.read()
        for offset, row in enumerate(self.data_rows(rows)):
            cells = [str(c).strip() for c in row]
            row_national_id = cells[1] if len(cells) > 1 else ""
            row_registration = cells[2] if len(cells) > 2 else ""

            if (
                (national_id and row_national_id == national_id)
                or (registration_number and row_registration == registration_number)
            ):
                found = dict(zip(ROSTER_COLUMNS, cells))
                found["row_number"] = self.header_rows + offset + 1
                return found
        return None
