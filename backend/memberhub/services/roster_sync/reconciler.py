"""
Matching of external roster rows to local members, and the reverse push.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

from memberhub.integrations.roster.client import BaseRosterClient
from memberhub.models.member import (
    Member, MemberStatus, Provenance, NATURAL_KEY_FIELDS, is_valid_national_id, normalize_key
)
from memberhub.services.member_store import MemberStore


logger = logging.getLogger(__name__)

# Fields the roster is authoritative for when a row matches a local member
ROSTER_OWNED_FIELDS = ("full_name", "national_id", "registration_number", "phone", "department")

ROSTER_DATE_FORMAT = "%d.%m.%Y"


class ReconcileAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    SKIP = "skip"


@dataclass
class RosterRow:
    full_name: str = ""
    national_id: str = ""
    registration_number: str = ""
    phone: str = ""
    department: str = ""
    payment_marker: str = ""
    date: str = ""


def parse_row(row: Sequence[Any]) -> RosterRow:
    """
    Read a positional roster row.

    Seven or more cells are ``[name, national id, registration no, phone,
    department, payment marker, date]``; exactly six cells carry the date in
    place of the payment marker. Cells past the seventh are ignored.
    """
    cells = ["" if c is None else str(c).strip() for c in row]
    cells += [""] * (7 - len(cells))

    if len(row) == 6:
        payment_marker, date = "", cells[5]
    else:
        payment_marker, date = cells[5], cells[6]

    return RosterRow(
        full_name=cells[0],
        national_id=cells[1],
        registration_number=cells[2],
        phone=cells[3],
        department=cells[4],
        payment_marker=payment_marker,
        date=date,
    )


@dataclass
class ReconcileResult:
    action: ReconcileAction
    record: Optional[Member] = None
    error: Optional[str] = None
    changes: Dict[str, Any] = field(default_factory=dict)


class RosterKeyIndex:
    """Natural keys seen in the roster during the current run."""

    def __init__(self):
        self.national_ids: Set[str] = set()
        self.registration_numbers: Set[str] = set()

    def add(self, roster_row: RosterRow) -> None:
        if roster_row.national_id:
            self.national_ids.add(roster_row.national_id)
        if roster_row.registration_number:
            self.registration_numbers.add(roster_row.registration_number)

    def contains(self, member: Member) -> bool:
        return (
            (bool(member.national_id) and member.national_id in self.national_ids)
            or (bool(member.registration_number) and member.registration_number in self.registration_numbers)
        )


class RecordReconciler:
    """Decides create/update for roster rows and pushes approved members back."""

    def __init__(
        self,
        store: MemberStore,
        roster_client: BaseRosterClient,
        payment_marker: str = "IBAN",
        clock: Callable[[], datetime] = datetime.utcnow
    ):
        self.store = store
        self.roster_client = roster_client
        self.payment_marker = payment_marker
        self._now = clock

    async def reconcile_external_row(self, row: Sequence[Any]) -> ReconcileResult:
        """
        Decide what a roster row means for the local store without writing.

        Returns:
            CREATE with an unsaved member, UPDATE with the existing member and
            the fields to change, or SKIP. A SKIP without ``error`` is a row
            that already matches its member; a row that would move a natural
            key held by another member is skipped with an error.
        """
        candidate = parse_row(row)
        national_id = normalize_key(candidate.national_id)
        registration_number = normalize_key(candidate.registration_number)
        label = candidate.full_name or "<unnamed row>"

        if not national_id and not registration_number:
            return ReconcileResult(
                action=ReconcileAction.SKIP,
                error=f"{label}: No unique identifier provided"
            )

        if national_id and not is_valid_national_id(national_id):
            return ReconcileResult(
                action=ReconcileAction.SKIP,
                error=f"{label}: Invalid national ID '{national_id}'"
            )

        existing = await self.store.find_by_natural_keys(national_id, registration_number)
        now = self._now()

        if existing is None:
            member = Member(
                full_name=candidate.full_name,
                national_id=national_id,
                registration_number=registration_number,
                phone=candidate.phone or None,
                department=candidate.department or None,
                roster_date=candidate.date or None,
                status=MemberStatus.APPROVED,
                provenance=Provenance.IMPORT,
                synced_to_external=True,
                last_external_update=now,
                created_at=now,
            )
            return ReconcileResult(action=ReconcileAction.CREATE, record=member)

        changes = self._merge_changes(existing, candidate)
        if not changes:
            return ReconcileResult(action=ReconcileAction.SKIP, record=existing)

        for key_field in NATURAL_KEY_FIELDS:
            if key_field not in changes:
                continue
            owner_id = await self.store.find_key_owner(key_field, changes[key_field], exclude_id=existing.id)
            if owner_id is not None:
                return ReconcileResult(
                    action=ReconcileAction.SKIP,
                    record=existing,
                    error=f"{label}: {key_field}={changes[key_field]} already belongs to member {owner_id}"
                )

        changes["last_external_update"] = now
        return ReconcileResult(action=ReconcileAction.UPDATE, record=existing, changes=changes)

    def _merge_changes(self, existing: Member, candidate: RosterRow) -> Dict[str, Any]:
        changes = {}

        for field_name in ROSTER_OWNED_FIELDS:
            value = getattr(candidate, field_name)
            if value and value != getattr(existing, field_name):
                changes[field_name] = value

        if candidate.date and not existing.roster_date:
            changes["roster_date"] = candidate.date

        if existing.provenance is None:
            changes["provenance"] = Provenance.IMPORT

        return changes

    async def apply(self, result: ReconcileResult) -> None:
        """Persist a CREATE or UPDATE decision."""
        if result.action == ReconcileAction.CREATE:
            await self.store.create(result.record)
        elif result.action == ReconcileAction.UPDATE:
            await self.store.update_fields(result.record.id, result.changes)

    def to_roster_row(self, member: Member) -> List[str]:
        created = member.created_at.strftime(ROSTER_DATE_FORMAT) if member.created_at else ""
        return [
            member.full_name or "",
            member.national_id or "",
            member.registration_number or "",
            member.phone or "",
            member.department or "",
            self.payment_marker,
            member.roster_date or created,
        ]

    async def push_local_to_external(
        self,
        member: Member,
        roster_index: Optional[RosterKeyIndex] = None
    ) -> bool:
        """
        Write an approved member to the roster and flag it as synced.

        A member whose natural key was already read from the roster in this
        run is only flagged, not appended again.

        Returns:
            True when a row was appended.
        """
        if member.status != MemberStatus.APPROVED:
            raise ValueError(f"Member {member.id} is not approved")
        if member.synced_to_external:
            return False

        row = self.to_roster_row(member)
        appended = False

        if roster_index is not None and roster_index.contains(member):
            logger.info(f"Member {member.id} already present in roster, marking as synced")
        else:
            await self.roster_client.append(row)
            appended = True
            if roster_index is not None:
                roster_index.add(parse_row(row))

        await self.store.update_fields(member.id, {
            "synced_to_external": True,
            "last_external_update": self._now(),
            "roster_date": row[6] or None,
        })
        return appended
