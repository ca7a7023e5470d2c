"""
Local data repair: duplicate natural keys and members missing required fields.

Both passes are idempotent and work without the external roster. A failure
on one member is recorded and the pass moves on to the next member.
"""

import logging
from dataclasses import dataclass, field
from typing import List

from memberhub.models.member import MemberStatus, Provenance, NATURAL_KEY_FIELDS
from memberhub.services.member_store import MemberStore


logger = logging.getLogger(__name__)


@dataclass
class IntegrityReport:
    cleaned: int = 0
    fixed: int = 0
    errors: List[str] = field(default_factory=list)

    def merge(self, other: "IntegrityReport") -> "IntegrityReport":
        return IntegrityReport(
            cleaned=self.cleaned + other.cleaned,
            fixed=self.fixed + other.fixed,
            errors=self.errors + other.errors,
        )


class IntegrityMaintainer:

    def __init__(self, store: MemberStore):
        self.store = store

    async def run_all(self) -> IntegrityReport:
        """Dedup then validation, as run by database-only syncs."""
        dedup = await self.deduplicate()
        validation = await self.validate_integrity()
        return dedup.merge(validation)

    async def deduplicate(self) -> IntegrityReport:
        """
        Remove members sharing a natural key, keeping the earliest created one.

        Runs once per key field since a member may collide on either.
        """
        report = IntegrityReport()

        for key_field in NATURAL_KEY_FIELDS:
            try:
                groups = await self.store.find_duplicate_groups(key_field)
            except Exception as e:
                await self.store.rollback()
                logger.error(f"Failed to find duplicate {key_field} values: {e}")
                report.errors.append(f"Duplicate {key_field} lookup: {e}")
                continue

            # Plain values only: a rollback below expires loaded members
            plan = [
                (getattr(group[0], key_field), group[0].id, [m.id for m in group[1:]])
                for group in groups
            ]

            for key_value, kept_id, duplicate_ids in plan:
                logger.info(
                    f"Duplicate {key_field}={key_value}: keeping member {kept_id}, "
                    f"removing {duplicate_ids}"
                )
                for member_id in duplicate_ids:
                    try:
                        if await self.store.delete(member_id):
                            report.cleaned += 1
                    except Exception as e:
                        await self.store.rollback()
                        logger.error(f"Failed to remove duplicate member {member_id}: {e}")
                        report.errors.append(f"Member {member_id} ({key_field}={key_value}): {e}")

        if report.cleaned:
            logger.info(f"Removed {report.cleaned} duplicate members")
        return report

    async def validate_integrity(self) -> IntegrityReport:
        """Assign default status/provenance to members missing them."""
        report = IntegrityReport()

        try:
            invalid_ids = [m.id for m in await self.store.find_invalid()]
        except Exception as e:
            await self.store.rollback()
            logger.error(f"Failed to find members with missing fields: {e}")
            report.errors.append(f"Missing field lookup: {e}")
            return report

        for member_id in invalid_ids:
            try:
                member = await self.store.get(member_id)
                if member is None:
                    continue

                fields = {}
                if member.status is None:
                    fields["status"] = MemberStatus.default()
                if member.provenance is None:
                    fields["provenance"] = Provenance.default()

                if fields:
                    await self.store.update_fields(member_id, fields)
                    report.fixed += 1
            except Exception as e:
                await self.store.rollback()
                logger.error(f"Failed to repair member {member_id}: {e}")
                report.errors.append(f"Member {member_id}: {e}")

        if report.fixed:
            logger.info(f"Repaired {report.fixed} members with missing fields")
        return report
