from __future__ import annotations

import enum


class AttendanceStatus(str, enum.Enum):
    PRESENT = "present"
    LATE = "late"
    GONE_EARLY = "gone_early"
    PARTIAL = "partial"
    ABSENT = "absent"
    NO_SHOW = "no_show"


# Statuses that count as having attended an operation.
PRESENT_STATUSES: tuple[AttendanceStatus, ...] = (
    AttendanceStatus.PRESENT,
    AttendanceStatus.LATE,
    AttendanceStatus.GONE_EARLY,
    AttendanceStatus.PARTIAL,
)


class AttendanceAction(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    TIME_UPDATED = "time_updated"
    DELETED = "deleted"
    IMPORTED = "imported"


class AttendanceSource(str, enum.Enum):
    MANUAL = "manual"
    AUTOMATED_SYSTEM = "automated_system"
    LEGACY_IMPORT = "legacy_import"


class ProposalStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"


class RankTrigger(str, enum.Enum):
    AUTO = "auto"
    ADMIN = "admin"
    ADMIN_MANUAL = "admin_manual"
    BOT = "bot"
    SYSTEM_MIGRATION = "system_migration"


class RankOutcome(str, enum.Enum):
    APPROVED = "approved"
    DECLINED = "declined"


class EligibilityReason(str, enum.Enum):
    ELIGIBLE_AUTO = "eligible_auto"
    ELIGIBLE_MANUAL = "eligible_manual"
    INELIGIBLE_RETIRED = "ineligible_retired"
    INELIGIBLE_INTERVIEW = "ineligible_interview"
    INELIGIBLE_NO_CURRENT_RANK = "ineligible_no_current_rank"
    INELIGIBLE_NO_NEXT_RANK = "ineligible_no_next_rank"
    INELIGIBLE_ATTENDANCE = "ineligible_attendance"
    INELIGIBLE_TRAINING = "ineligible_training"


class MigrationStrategy(str, enum.Enum):
    RECALCULATE = "recalculate"
    GRANDFATHER = "grandfather"
    MAP = "map"


class ChangeType(str, enum.Enum):
    PROMOTION = "promotion"
    DEMOTION = "demotion"
    UNCHANGED = "unchanged"


class AudienceType(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"
    ALL = "all"


class MessageCategory(str, enum.Enum):
    RANKUP = "rankup"
    ATTENDANCE = "attendance"
    GENERAL = "general"


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Persist enum values (``"pending"``) rather than member names."""
    return [member.value for member in enum_cls]
