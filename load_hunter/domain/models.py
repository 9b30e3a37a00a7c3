"""
Domain models for Load Hunter.

Defines the schema shared by the stores, the matching components and the
worker, aligned with `db/init.sql`. Models are frozen; state changes produce
copies through ``model_copy(update=...)``. Every timestamp is timezone-aware
UTC, naive inputs are read as UTC.
"""
from __future__ import annotations

import re
import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

_FROZEN = {
    "frozen": True,
    "populate_by_name": True,
    "arbitrary_types_allowed": False,
}

_ZIP5 = re.compile(r"^(\d{5})")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_postal(value: Optional[str]) -> Optional[str]:
    """
    Canonical postal code for exact comparison.

    US ZIP and ZIP+4 collapse to their first five digits; anything else is
    upper-cased with spaces removed.
    """
    if not value:
        return None
    compact = value.strip().upper().replace(" ", "")
    if not compact:
        return None
    zip5 = _ZIP5.match(compact)
    return zip5.group(1) if zip5 else compact


class MatchStatus(str, Enum):
    ACTIVE = "active"
    SKIPPED = "skipped"
    BID = "bid"
    WAITLIST = "waitlist"
    UNDECIDED = "undecided"
    BOOKED = "booked"
    EXPIRED = "expired"


class PostingStatus(str, Enum):
    NEW = "new"
    SKIPPED = "skipped"
    WAITLIST = "waitlist"
    BID = "bid"
    BOOKED = "booked"

    @property
    def rank(self) -> int:
        """Progress order; a posting only moves to a higher rank."""
        return _POSTING_RANK[self]

    def predecessors(self) -> List["PostingStatus"]:
        return [status for status in PostingStatus if status.rank < self.rank]


_POSTING_RANK = {
    PostingStatus.NEW: 0,
    PostingStatus.SKIPPED: 1,
    PostingStatus.WAITLIST: 1,
    PostingStatus.BID: 2,
    PostingStatus.BOOKED: 3,
}


class HuntState(str, Enum):
    DISABLED = "disabled"
    ACTIVATING = "activating"
    LIVE = "live"


class OperatorAction(str, Enum):
    SKIP = "skip"
    BID = "bid"
    WAITLIST = "waitlist"
    UNDECIDED = "undecided"
    BOOK = "book"


class EventKind(str, Enum):
    POSTING = "posting"
    HUNT = "hunt"
    MATCH = "match"


class Coordinates(BaseModel):
    lat: float = Field(..., ge=-90.0, le=90.0)
    lng: float = Field(..., ge=-180.0, le=180.0)

    model_config = _FROZEN


class Place(BaseModel):
    """A parsed location descriptor: any subset of its fields may be absent."""

    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    coordinates: Optional[Coordinates] = None

    model_config = _FROZEN

    @property
    def city_state(self) -> Optional[str]:
        if self.city and self.state:
            return f"{self.city.strip()}, {self.state.strip()}"
        return None

    @property
    def normalized_postal(self) -> Optional[str]:
        return normalize_postal(self.postal_code)

    @property
    def has_signal(self) -> bool:
        return bool(self.coordinates or self.city_state or self.normalized_postal)


class Vehicle(BaseModel):
    """
    A fleet vehicle as seen by the matcher (owned by fleet management).
    """

    id: str = Field(default_factory=new_id)
    tenant_id: str
    unit_number: Optional[str] = None
    asset_type: Optional[str] = None
    status: str = "active"
    last_position: Optional[Coordinates] = None
    odometer: Optional[float] = None

    model_config = _FROZEN


class HuntPlan(BaseModel):
    """
    A saved per-vehicle search profile.

    ``floor_marker`` and ``initial_backfill_done`` belong to the cursor
    controller; nothing else writes them.
    """

    id: str = Field(default_factory=new_id)
    tenant_id: str
    vehicle_id: str
    name: str = ""
    vehicle_types: List[str] = Field(default_factory=list)
    origin_point: Optional[Coordinates] = None
    radius_miles: float = Field(100.0, gt=0)
    postal_code: Optional[str] = None
    earliest_pickup: Optional[date] = None
    destination_point: Optional[Coordinates] = None
    destination_radius_miles: Optional[float] = Field(None, gt=0)
    load_capacity: Optional[float] = Field(None, gt=0)
    enabled: bool = False
    floor_marker: Optional[int] = None
    initial_backfill_done: bool = False
    created_at: datetime = Field(default_factory=utc_now)
    deleted_at: Optional[datetime] = None

    model_config = _FROZEN

    @property
    def state(self) -> HuntState:
        if not self.enabled:
            return HuntState.DISABLED
        if not self.initial_backfill_done:
            return HuntState.ACTIVATING
        return HuntState.LIVE

    @property
    def is_live(self) -> bool:
        return self.state is HuntState.LIVE

    def accepts_after(self, seq: int) -> bool:
        """Forward-only check: the posting sequence must be past the floor."""
        return self.floor_marker is None or seq > self.floor_marker


class Posting(BaseModel):
    """
    One inbound load offer. Immutable apart from ``status`` and ``has_issues``.
    """

    id: str = Field(default_factory=new_id)
    tenant_id: str
    seq: int = Field(..., ge=1)
    received_at: datetime
    expires_at: Optional[datetime] = None
    status: PostingStatus = PostingStatus.NEW
    origin: Place = Field(default_factory=Place)
    destination: Optional[Place] = None
    vehicle_type: Optional[str] = None
    pickup_date: Optional[date] = None
    weight: Optional[float] = None
    has_issues: bool = False

    model_config = _FROZEN

    @field_validator("received_at", "expires_at")
    @classmethod
    def _to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value) if value is not None else None

    @field_validator("pickup_date", mode="before")
    @classmethod
    def _truncate_pickup(cls, value):
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, str):
            # "2025-12-19 08:00 CST" keeps only its calendar day
            text = value.strip()
            return date.fromisoformat(text[:10]) if text else None
        return value

    @property
    def has_location_signal(self) -> bool:
        return self.origin.has_signal


class Match(BaseModel):
    """
    The (posting, hunt) relationship. Unique on that pair.
    """

    id: str = Field(default_factory=new_id)
    tenant_id: str
    posting_id: str
    hunt_id: str
    vehicle_id: str
    distance_miles: Optional[float] = None
    status: MatchStatus = MatchStatus.ACTIVE
    matched_at: datetime = Field(default_factory=utc_now)
    actioned_at: Optional[datetime] = None
    bid_rate: Optional[float] = None
    bid_by: Optional[str] = None
    booked_load_id: Optional[str] = None

    model_config = _FROZEN

    @field_validator("matched_at", "actioned_at")
    @classmethod
    def _to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value) if value is not None else None

    @property
    def active(self) -> bool:
        return self.status is MatchStatus.ACTIVE

    @property
    def key(self) -> tuple[str, str]:
        return (self.posting_id, self.hunt_id)


class MissedRecord(BaseModel):
    """Archival copy of a match nobody acted on in time; one per match."""

    match_id: str
    tenant_id: str
    posting_id: str
    hunt_id: str
    vehicle_id: str
    matched_at: datetime
    missed_at: datetime = Field(default_factory=utc_now)
    posting_received_at: Optional[datetime] = None

    model_config = _FROZEN


class MatchAction(BaseModel):
    """Audit row for an operator decision."""

    id: str = Field(default_factory=new_id)
    tenant_id: str
    match_id: str
    action: OperatorAction
    actor: Optional[str] = None
    rate: Optional[float] = None
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)

    model_config = _FROZEN


class MatchResult(BaseModel):
    matches: bool
    distance: Optional[float] = None
    reason: Optional[str] = None

    model_config = _FROZEN


class MatchEntry(BaseModel):
    """A match joined with its posting, as the read path consumes it."""

    match: Match
    posting: Posting

    model_config = _FROZEN


class MatchGroup(BaseModel):
    """
    One presented queue row: the primary match plus its siblings for the
    same posting.
    """

    primary: MatchEntry
    siblings: List[MatchEntry] = Field(default_factory=list)

    model_config = _FROZEN

    @property
    def match_count(self) -> int:
        return 1 + len(self.siblings)

    @property
    def is_grouped(self) -> bool:
        return bool(self.siblings)


class ChangeEvent(BaseModel):
    """Insert/update notification for a posting, hunt or match."""

    kind: EventKind
    tenant_id: str
    entity_id: str
    op: str = "insert"
    seq: Optional[int] = None

    model_config = _FROZEN


__all__ = [
    "ChangeEvent",
    "Coordinates",
    "EventKind",
    "HuntPlan",
    "HuntState",
    "Match",
    "MatchAction",
    "MatchEntry",
    "MatchGroup",
    "MatchResult",
    "MatchStatus",
    "MissedRecord",
    "OperatorAction",
    "Place",
    "Posting",
    "PostingStatus",
    "Vehicle",
    "as_utc",
    "new_id",
    "normalize_postal",
    "utc_now",
]
