"""
Test doubles and database helpers for roster sync tests.
"""

from typing import List, Optional

from sqlalchemy import select

from memberhub.integrations.roster.client import BaseRosterClient, RosterHandshake, Row
from memberhub.models import Member


ROSTER_HEADER = ["Name", "National ID", "Registration No", "Phone", "Department", "Payment", "Date"]


class FakeRosterClient(BaseRosterClient):
    """In-memory roster with switchable failures."""

    def __init__(self, rows: Optional[List[Row]] = None):
        super().__init__(header_rows=1)
        self.rows: List[Row] = [list(ROSTER_HEADER)] + [list(r) for r in rows or []]
        self.appended: List[Row] = []
        self.read_calls = 0
        self.read_error: Optional[Exception] = None
        self.append_error: Optional[Exception] = None
        self.init_error: Optional[Exception] = None
        self.mock_mode = False

    async def initialize(self) -> RosterHandshake:
        if self.mock_mode:
            return RosterHandshake(success=False, mock_mode=True, message="No roster spreadsheet configured")
        if self.init_error is not None:
            raise self.init_error
        self._initialized = True
        return RosterHandshake(success=True, message="Fake roster")

    async def read(self, range_: Optional[str] = None) -> List[Row]:
        self.read_calls += 1
        if self.read_error is not None:
            raise self.read_error
        return [list(r) for r in self.rows]

    async def append(self, row: Row) -> None:
        if self.append_error is not None:
            raise self.append_error
        self.appended.append(list(row))
        self.rows.append(list(row))

    async def update(self, range_: str, row: Row) -> None:
        self.rows[int(range_.lstrip("A")) - 1] = list(row)


class RecordingSleep:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


async def add_members(session_factory, *members: Member) -> List[int]:
    """Insert members directly, bypassing store validation."""
    async with session_factory() as session:
        session.add_all(members)
        await session.commit()
        return [m.id for m in members]


async def load_members(session_factory) -> List[Member]:
    async with session_factory() as session:
        result = await session.execute(select(Member).order_by(Member.id))
        return list(result.scalars().all())
