"""
Tests for duplicate removal and missing-field repair.
"""

import pytest
from datetime import datetime, timedelta
from unittest.mock import AsyncMock

from sqlalchemy import update

from memberhub.models.member import Member, MemberStatus, Provenance
from memberhub.services.member_store import MemberStore
from memberhub.services.roster_sync.integrity import IntegrityMaintainer

from support import add_members, load_members


T0 = datetime(2024, 1, 1, 9, 0, 0)


def member(name: str, created_at: datetime, **fields) -> Member:
    fields.setdefault('status', MemberStatus.APPROVED)
    fields.setdefault('provenance', Provenance.WEBSITE)
    return Member(full_name=name, created_at=created_at, **fields)


async def null_out(session_factory, member_id: int, **values) -> None:
    async with session_factory() as session:
        await session.execute(update(Member).where(Member.id == member_id).values(**values))
        await session.commit()


@pytest.fixture
def maintainer(db):
    return IntegrityMaintainer(MemberStore(db))


class TestDeduplicate:
    """Test duplicate natural key removal."""

    async def test_keeps_earliest_created(self, maintainer, session_factory):
        """Records at t0, t1 and t2 sharing a national ID collapse to the t0 record."""
        await add_members(
            session_factory,
            member("second", T0 + timedelta(hours=1), national_id="12345678901"),
            member("first", T0, national_id="12345678901"),
            member("third", T0 + timedelta(hours=2), national_id="12345678901"),
        )

        report = await maintainer.deduplicate()

        assert report.cleaned == 2
        assert report.errors == []
        remaining = await load_members(session_factory)
        assert [m.full_name for m in remaining] == ["first"]

    async def test_deduplicates_each_key_field(self, maintainer, session_factory):
        await add_members(
            session_factory,
            member("a", T0, registration_number="R-1"),
            member("b", T0 + timedelta(minutes=5), registration_number="R-1"),
            member("c", T0, national_id="12345678901"),
            member("d", T0 + timedelta(minutes=5), national_id="12345678901"),
            member("e", T0, national_id="10987654321", registration_number="R-9"),
        )

        report = await maintainer.deduplicate()

        assert report.cleaned == 2
        names = sorted(m.full_name for m in await load_members(session_factory))
        assert names == ["a", "c", "e"]

    async def test_empty_keys_are_not_duplicates(self, maintainer, session_factory):
        await add_members(
            session_factory,
            member("a", T0, national_id="12345678901"),
            member("b", T0, registration_number="R-2"),
            member("c", T0, registration_number="R-3"),
        )

        report = await maintainer.deduplicate()

        assert report.cleaned == 0
        assert len(await load_members(session_factory)) == 3

    async def test_idempotent(self, maintainer, session_factory):
        await add_members(
            session_factory,
            member("a", T0, registration_number="R-1"),
            member("b", T0 + timedelta(seconds=1), registration_number="R-1"),
        )

        first = await maintainer.deduplicate()
        second = await maintainer.deduplicate()

        assert first.cleaned == 1
        assert second.cleaned == 0

    async def test_delete_failure_is_isolated(self, session_factory, db):
        await add_members(
            session_factory,
            member("a", T0, registration_number="R-1"),
            member("b", T0 + timedelta(seconds=1), registration_number="R-1"),
            member("c", T0 + timedelta(seconds=2), registration_number="R-1"),
        )
        store = MemberStore(db)
        delete = store.delete
        failed = []

        async def flaky_delete(member_id):
            if not failed:
                failed.append(member_id)
                raise RuntimeError("locked")
            return await delete(member_id)

        store.delete = flaky_delete
        store.rollback = AsyncMock(wraps=store.rollback)

        report = await IntegrityMaintainer(store).deduplicate()

        assert report.cleaned == 1
        assert report.errors == [f"Member {failed[0]} (registration_number=R-1): locked"]
        store.rollback.assert_awaited_once()
        names = [m.full_name for m in await load_members(session_factory)]
        assert sorted(names) == ["a", "b"]

    async def test_lookup_failure_is_recorded(self, db):
        store = MemberStore(db)
        store.find_duplicate_groups = AsyncMock(side_effect=[RuntimeError("gone"), []])
        store.rollback = AsyncMock()

        report = await IntegrityMaintainer(store).deduplicate()

        assert report.errors == ["Duplicate national_id lookup: gone"]
        store.rollback.assert_awaited_once()
        assert store.find_duplicate_groups.await_count == 2


class TestValidateIntegrity:
    """Test repair of members missing status or provenance."""

    async def test_assigns_defaults(self, maintainer, session_factory):
        ids = await add_members(
            session_factory,
            member("no status", T0, registration_number="R-1"),
            member("no provenance", T0, registration_number="R-2"),
            member("valid", T0, registration_number="R-3"),
        )
        await null_out(session_factory, ids[0], status=None)
        await null_out(session_factory, ids[1], provenance=None)

        report = await maintainer.validate_integrity()

        assert report.fixed == 2
        members = {m.full_name: m for m in await load_members(session_factory)}
        assert members["no status"].status == MemberStatus.PENDING
        assert members["no status"].provenance == Provenance.WEBSITE
        assert members["no provenance"].provenance == Provenance.UNKNOWN
        assert members["valid"].status == MemberStatus.APPROVED

    async def test_nothing_to_fix(self, maintainer, session_factory):
        await add_members(session_factory, member("valid", T0, registration_number="R-1"))

        report = await maintainer.validate_integrity()

        assert report.fixed == 0

    async def test_repair_failure_rolls_back(self, session_factory, db):
        ids = await add_members(
            session_factory,
            member("broken", T0, registration_number="R-1"),
            member("also broken", T0, registration_number="R-2"),
        )
        await null_out(session_factory, ids[0], status=None)
        await null_out(session_factory, ids[1], status=None)

        store = MemberStore(db)
        store.update_fields = AsyncMock(side_effect=[RuntimeError("locked"), None])
        store.rollback = AsyncMock(wraps=store.rollback)

        report = await IntegrityMaintainer(store).validate_integrity()

        assert report.fixed == 1
        assert report.errors == [f"Member {ids[0]}: locked"]
        store.rollback.assert_awaited_once()

    async def test_lookup_failure_is_recorded(self, db):
        store = MemberStore(db)
        store.find_invalid = AsyncMock(side_effect=RuntimeError("gone"))
        store.rollback = AsyncMock()

        report = await IntegrityMaintainer(store).validate_integrity()

        assert report.errors == ["Missing field lookup: gone"]
        store.rollback.assert_awaited_once()

    async def test_run_all_combines_reports(self, maintainer, session_factory):
        ids = await add_members(
            session_factory,
            member("a", T0, registration_number="R-1"),
            member("b", T0 + timedelta(seconds=1), registration_number="R-1"),
            member("c", T0, registration_number="R-2"),
        )
        await null_out(session_factory, ids[2], status=None, provenance=None)

        report = await maintainer.run_all()

        assert report.cleaned == 1
        assert report.fixed == 1
