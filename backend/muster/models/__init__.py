"""Import all models so SQLAlchemy metadata is fully registered."""

from muster.db.base import Base

from muster.models.attendance import Attendance, AttendanceLog, AttendanceSession
from muster.models.enums import (
    AttendanceAction,
    AttendanceSource,
    AttendanceStatus,
    AudienceType,
    ChangeType,
    EligibilityReason,
    MessageCategory,
    MigrationStrategy,
    ProposalStatus,
    RankOutcome,
    RankTrigger,
)
from muster.models.message import Message, MessageRecipient
from muster.models.rank import (
    PromotionProposal,
    Rank,
    RankHistory,
    RankTransitionRequirement,
    UserRank,
)
from muster.models.roster import Orbat, Signup
from muster.models.training import Training, TrainingPrerequisite, UserTraining
from muster.models.user import AuthAccount, User

__all__ = [
    "Base",
    "User",
    "AuthAccount",
    "Orbat",
    "Signup",
    "Attendance",
    "AttendanceLog",
    "AttendanceSession",
    "AttendanceStatus",
    "AttendanceAction",
    "AttendanceSource",
    "Rank",
    "UserRank",
    "PromotionProposal",
    "RankHistory",
    "RankTransitionRequirement",
    "ProposalStatus",
    "RankTrigger",
    "RankOutcome",
    "EligibilityReason",
    "MigrationStrategy",
    "ChangeType",
    "Training",
    "TrainingPrerequisite",
    "UserTraining",
    "Message",
    "MessageRecipient",
    "AudienceType",
    "MessageCategory",
]
