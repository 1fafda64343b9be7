# Services package
from .interval_store import IntervalStore
from .availability_service import AvailabilityEvaluator, AvailabilityVerdict, get_availability_evaluator
from .pricing_engine import PricingEngine, PriceBreakdown, get_pricing_engine
from .feed_ingestor import FeedIngestor, ExternalEvent, parse_feed
from .reconciler import Reconciler, ReconcileResult
from .sync_orchestrator import SyncOrchestrator, SyncOutcome, TickResult
from .conflict_service import ConflictResolutionService, get_conflict_service
from .booking_service import BookingService
from .connection_service import ConnectionService
from .ical_export import build_unit_calendar

__all__ = [
    "IntervalStore",
    "AvailabilityEvaluator", "AvailabilityVerdict", "get_availability_evaluator",
    "PricingEngine", "PriceBreakdown", "get_pricing_engine",
    "FeedIngestor", "ExternalEvent", "parse_feed",
    "Reconciler", "ReconcileResult",
    "SyncOrchestrator", "SyncOutcome", "TickResult",
    "ConflictResolutionService", "get_conflict_service",
    "BookingService",
    "ConnectionService",
    "build_unit_calendar",
]
