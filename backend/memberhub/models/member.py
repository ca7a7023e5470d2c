"""
SQLAlchemy model for community membership records.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Index, Enum as SQLEnum
import enum
import re
from datetime import datetime
from typing import Optional

from memberhub.core.database import Base
from memberhub.core.exceptions import MissingIdentifierError, InvalidNationalIdError


NATIONAL_ID_PATTERN = re.compile(r"^[1-9][0-9]{10}$")

NATURAL_KEY_FIELDS = ("national_id", "registration_number")


class MemberStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

    @classmethod
    def default(cls) -> "MemberStatus":
        return cls.PENDING


class Provenance(str, enum.Enum):
    """Which workflow created the record."""
    WEBSITE = "WEBSITE"
    IMPORT = "IMPORT"
    MANUAL = "MANUAL"
    UNKNOWN = "UNKNOWN"  # only assigned by integrity repair

    @classmethod
    def default(cls) -> "Provenance":
        return cls.UNKNOWN


def normalize_key(value: Optional[str]) -> Optional[str]:
    """Strip a natural key and turn blanks into None."""
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def is_valid_national_id(value: str) -> bool:
    return bool(NATIONAL_ID_PATTERN.match(value))


class Member(Base):
    __tablename__ = "members"

    id = Column(Integer, primary_key=True, index=True)
    full_name = Column(String(255), nullable=False, default="")

    # Natural keys; uniqueness is checked by MemberStore, see IntegrityMaintainer
    national_id = Column(String(11), nullable=True, index=True)
    registration_number = Column(String(50), nullable=True, index=True)

    phone = Column(String(20), nullable=True)
    department = Column(String(255), nullable=True)

    # Nullable so legacy rows without them can be found and repaired
    status = Column(SQLEnum(MemberStatus), nullable=True, default=MemberStatus.PENDING)
    provenance = Column(SQLEnum(Provenance), nullable=True, default=Provenance.WEBSITE)

    # External roster tracking
    synced_to_external = Column(Boolean, nullable=False, default=False)
    last_external_update = Column(DateTime(timezone=True), nullable=True)
    roster_date = Column(String(20), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_members_status_synced", "status", "synced_to_external"),
    )

    @property
    def natural_keys(self) -> dict:
        return {
            field: getattr(self, field)
            for field in NATURAL_KEY_FIELDS
            if getattr(self, field)
        }

    def ensure_identity(self) -> None:
        """Validate natural keys before the record is persisted."""
        self.national_id = normalize_key(self.national_id)
        self.registration_number = normalize_key(self.registration_number)

        if not self.national_id and not self.registration_number:
            raise MissingIdentifierError(self.full_name or "")
        if self.national_id and not is_valid_national_id(self.national_id):
            raise InvalidNationalIdError(self.national_id)

    def mark_synced(self, when: Optional[datetime] = None) -> None:
        self.synced_to_external = True
        self.last_external_update = when or datetime.utcnow()

    def __repr__(self) -> str:
        return (
            f"<Member id={self.id} national_id={self.national_id} "
            f"registration_number={self.registration_number} status={self.status}>"
        )
