from .member import Member, MemberStatus, Provenance
from .sync_run import SyncRunRecord, RosterSyncStatus

__all__ = [
    "Member",
    "MemberStatus",
    "Provenance",
    "SyncRunRecord",
    "RosterSyncStatus",
]
