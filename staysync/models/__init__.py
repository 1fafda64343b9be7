# Models package
from .unit import Unit
from .availability_rule import AvailabilityRule, RuleKind
from .reservation import Reservation, ReservationStatus, PaymentStatus, ReservationSource
from .channel_connection import (
    ChannelConnection,
    ExternalEventSnapshot,
    SyncLog,
    ConnectionStatus,
    Platform,
    PLATFORM_LABELS,
    SyncType,
    SyncTrigger,
    SyncLogStatus
)
from .conflict import Conflict, ConflictType, ConflictSeverity, ConflictStatus, ResolutionAction

__all__ = [
    "Unit",
    "AvailabilityRule", "RuleKind",
    "Reservation", "ReservationStatus", "PaymentStatus", "ReservationSource",
    "ChannelConnection", "ExternalEventSnapshot", "SyncLog",
    "ConnectionStatus", "Platform", "PLATFORM_LABELS", "SyncType", "SyncTrigger", "SyncLogStatus",
    "Conflict", "ConflictType", "ConflictSeverity", "ConflictStatus", "ResolutionAction"
]
