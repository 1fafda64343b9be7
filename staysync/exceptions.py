"""
Domain exceptions.

Services raise these; main.py maps them to JSON responses using
``status_code``. Expected outcomes (dates unavailable on a quote, a detected
double booking) are results, not exceptions.
"""

from typing import Optional, Any


class StaySyncError(Exception):
    """Base class for all domain errors"""
    status_code: int = 500

    def __init__(self, detail: str, field: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        self.field = field

    def to_dict(self) -> dict:
        body = {"detail": self.detail}
        if self.field:
            body["field"] = self.field
        return body


class ValidationError(StaySyncError):
    """Rejected input: bad date range, non-HTTPS feed URL, missing rule payload"""
    status_code = 422


class RuleOverlapError(ValidationError):
    """A rule of the same kind already covers part of the range"""

    def __init__(self, detail: str, conflicting_rule_id: Optional[str] = None):
        super().__init__(detail, field="start_date")
        self.conflicting_rule_id = conflicting_rule_id


class NotFoundError(StaySyncError):
    status_code = 404

    def __init__(self, resource: str, identifier: Optional[str] = None):
        detail = f"{resource} not found"
        if identifier:
            detail = f"{resource} '{identifier}' not found"
        super().__init__(detail)


class PricingError(StaySyncError):
    status_code = 422


class DatesUnavailableError(StaySyncError):
    """Raised on the booking commit path when the re-check fails"""
    status_code = 409

    def __init__(self, verdict: Any):
        super().__init__(f"Dates not available: {verdict.reason}", field="check_in")
        self.verdict = verdict

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["verdict"] = self.verdict.to_dict()
        return body


class ConflictStateError(StaySyncError):
    """Resolve/ignore on a conflict that is already closed"""
    status_code = 409


class ResolutionRejectedError(StaySyncError):
    """keep_remote would create a new intersection, or the remote side is gone"""
    status_code = 409


class ConnectionNotSyncableError(StaySyncError):
    status_code = 409


class FeedError(StaySyncError):
    """
    Connection-level sync failure. Network and parse failures are reported
    the same way; the original exception stays available as ``__cause__``.
    """
    status_code = 502


class FeedFetchError(FeedError):
    pass


class FeedParseError(FeedError):
    pass


class DatesOccupiedError(StaySyncError):
    """Blocking dates that existing reservations already hold"""
    status_code = 409

    def __init__(self, detail: str, reservation_ids: Optional[list] = None):
        super().__init__(detail, field="start_date")
        self.reservation_ids = reservation_ids or []

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["reservation_ids"] = self.reservation_ids
        return body
