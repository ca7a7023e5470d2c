"""
Persistence operations on member records used by roster sync.
"""

import logging
from itertools import groupby
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func, or_, and_, delete
from sqlalchemy.ext.asyncio import AsyncSession

from memberhub.core.exceptions import DuplicateNaturalKeyError
from memberhub.models.member import Member, MemberStatus, NATURAL_KEY_FIELDS, normalize_key


logger = logging.getLogger(__name__)


class MemberStore:
    """Member queries and writes over one async session.

    Every write commits on its own so a failing record only rolls back itself.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def count(self) -> int:
        result = await self.db.execute(select(func.count(Member.id)))
        return result.scalar_one()

    async def get(self, member_id: int) -> Optional[Member]:
        return await self.db.get(Member, member_id)

    async def find_by_natural_keys(
        self,
        national_id: Optional[str] = None,
        registration_number: Optional[str] = None
    ) -> Optional[Member]:
        """
        Find the member whose national ID or registration number matches.

        Blank keys are ignored. When several members match, the earliest
        created one is returned.
        """
        conditions = []
        national_id = normalize_key(national_id)
        registration_number = normalize_key(registration_number)

        if national_id:
            conditions.append(Member.national_id == national_id)
        if registration_number:
            conditions.append(Member.registration_number == registration_number)

        if not conditions:
            return None

        result = await self.db.execute(
            select(Member)
            .where(or_(*conditions))
            .order_by(Member.created_at, Member.id)
            .limit(1)
        )
        return result.scalars().first()

    async def create(self, member: Member) -> Member:
        """Validate identity and uniqueness, then insert the member."""
        member.ensure_identity()

        for field in NATURAL_KEY_FIELDS:
            value = getattr(member, field)
            if value and await self._key_taken(field, value):
                raise DuplicateNaturalKeyError(field, value)

        self.db.add(member)
        await self._commit()
        await self.db.refresh(member)
        return member

    async def update_fields(self, member_id: int, fields: Dict[str, Any]) -> Optional[Member]:
        """
        Set ``fields`` on a member and commit.

        Raises:
            DuplicateNaturalKeyError: A changed natural key belongs to another member
        """
        member = await self.get(member_id)
        if not member:
            return None

        for field, value in fields.items():
            if not hasattr(member, field):
                raise AttributeError(f"Member has no field '{field}'")

        for field in NATURAL_KEY_FIELDS:
            value = normalize_key(fields.get(field))
            if value and value != getattr(member, field):
                if await self.find_key_owner(field, value, exclude_id=member_id) is not None:
                    raise DuplicateNaturalKeyError(field, value)

        for field, value in fields.items():
            setattr(member, field, value)

        await self._commit()
        return member

    async def delete(self, member_id: int) -> bool:
        result = await self.db.execute(delete(Member).where(Member.id == member_id))
        await self._commit()
        return result.rowcount > 0

    async def find_duplicate_groups(self, field: str) -> List[List[Member]]:
        """
        Members sharing a non-empty value of ``field``, grouped by value.

        Each group is ordered by ``created_at`` (then ``id``) ascending.
        """
        if field not in NATURAL_KEY_FIELDS:
            raise ValueError(f"Unsupported natural key field: {field}")

        column = getattr(Member, field)
        duplicate_keys = (
            select(column)
            .where(and_(column.isnot(None), column != ""))
            .group_by(column)
            .having(func.count(Member.id) > 1)
        )

        result = await self.db.execute(
            select(Member)
            .where(column.in_(duplicate_keys))
            .order_by(column, Member.created_at, Member.id)
        )
        members = result.scalars().all()

        return [list(group) for _, group in groupby(members, key=lambda m: getattr(m, field))]

    async def find_invalid(self) -> List[Member]:
        """Members missing a status or a provenance."""
        result = await self.db.execute(
            select(Member)
            .where(or_(Member.status.is_(None), Member.provenance.is_(None)))
            .order_by(Member.id)
        )
        return list(result.scalars().all())

    async def find_pending_push(self) -> List[Member]:
        """Approved members not yet written to the external roster."""
        result = await self.db.execute(
            select(Member)
            .where(
                and_(
                    Member.status == MemberStatus.APPROVED,
                    or_(Member.synced_to_external == False, Member.synced_to_external.is_(None))  # noqa: E712
                )
            )
            .order_by(Member.created_at, Member.id)
        )
        return list(result.scalars().all())

    async def rollback(self) -> None:
        await self.db.rollback()

    async def find_key_owner(
        self,
        field: str,
        value: str,
        exclude_id: Optional[int] = None
    ) -> Optional[int]:
        """Id of the earliest member other than ``exclude_id`` holding ``value`` in ``field``."""
        query = select(Member.id).where(getattr(Member, field) == value)
        if exclude_id is not None:
            query = query.where(Member.id != exclude_id)

        result = await self.db.execute(query.order_by(Member.created_at, Member.id).limit(1))
        return result.scalars().first()

    async def _key_taken(self, field: str, value: str) -> bool:
        result = await self.db.execute(
            select(func.count(Member.id)).where(getattr(Member, field) == value)
        )
        return result.scalar_one() > 0

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
