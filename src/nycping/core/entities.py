from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum, IntEnum
from typing import Dict, FrozenSet, List, Mapping, Optional


class ModuleId(str, Enum):
    PARKING = "parking"
    TRANSIT = "transit"
    EVENTS = "events"
    HOUSING = "housing"
    FOOD = "food"
    DEALS = "deals"
    NEWS = "news"
    WEATHER = "weather"


class TypeFamily(IntEnum):
    """
    Fixed priority order used by the cross-type dedup pass.
    Lower value wins ties.
    """
    NEWS = 0
    ALERTS = 1
    EVENTS = 2
    SAMPLE_SALES = 3
    OTHER = 4


class ContentType(str, Enum):
    NEWS = "news"
    BREAKING_NEWS = "breaking_news"
    LOCAL_NEWS = "local_news"

    TRANSIT_ALERT = "transit_alert"
    TRANSIT_DELAY = "transit_delay"
    TRANSIT_OUTAGE = "transit_outage"
    TRANSIT_ADVISORY = "transit_advisory"
    TRANSIT_RESTORATION = "transit_restoration"

    PARKING_ALERT = "parking_alert"
    PARKING_EMERGENCY = "parking_emergency"
    ASP_STATUS = "asp_status"
    ASP_SUSPENSION = "asp_suspension"
    ASP_IN_EFFECT = "asp_in_effect"
    ASP_TOMORROW = "asp_tomorrow"
    METER_STATUS = "meter_status"
    STREET_CLOSURE = "street_closure"

    WEATHER_DAILY = "weather_daily"
    WEATHER_ADVISORY = "weather_advisory"
    WEATHER_SEVERE = "weather_severe"

    EVENT = "event"
    EVENT_REMINDER = "event_reminder"
    HOUSING = "housing"
    SAMPLE_SALE = "sample_sale"

    TIPS = "tips"
    NEIGHBORHOOD_UPDATE = "neighborhood_update"
    WEEKLY_RECAP = "weekly_recap"

    @property
    def module(self) -> ModuleId:
        return _MODULES.get(self, ModuleId.NEWS)

    @property
    def family(self) -> TypeFamily:
        return _FAMILIES.get(self, TypeFamily.OTHER)

    @property
    def is_transit_alert(self) -> bool:
        """Transit types that go through severity classification."""
        return self in (
            ContentType.TRANSIT_ALERT,
            ContentType.TRANSIT_DELAY,
            ContentType.TRANSIT_OUTAGE,
        )


_MODULES: Dict[ContentType, ModuleId] = {
    ContentType.NEWS: ModuleId.NEWS,
    ContentType.BREAKING_NEWS: ModuleId.NEWS,
    ContentType.LOCAL_NEWS: ModuleId.NEWS,
    ContentType.TRANSIT_ALERT: ModuleId.TRANSIT,
    ContentType.TRANSIT_DELAY: ModuleId.TRANSIT,
    ContentType.TRANSIT_OUTAGE: ModuleId.TRANSIT,
    ContentType.TRANSIT_ADVISORY: ModuleId.TRANSIT,
    ContentType.TRANSIT_RESTORATION: ModuleId.TRANSIT,
    ContentType.PARKING_ALERT: ModuleId.PARKING,
    ContentType.PARKING_EMERGENCY: ModuleId.PARKING,
    ContentType.ASP_STATUS: ModuleId.PARKING,
    ContentType.ASP_SUSPENSION: ModuleId.PARKING,
    ContentType.ASP_IN_EFFECT: ModuleId.PARKING,
    ContentType.ASP_TOMORROW: ModuleId.PARKING,
    ContentType.METER_STATUS: ModuleId.PARKING,
    ContentType.STREET_CLOSURE: ModuleId.PARKING,
    ContentType.WEATHER_DAILY: ModuleId.WEATHER,
    ContentType.WEATHER_ADVISORY: ModuleId.WEATHER,
    ContentType.WEATHER_SEVERE: ModuleId.WEATHER,
    ContentType.EVENT: ModuleId.EVENTS,
    ContentType.EVENT_REMINDER: ModuleId.EVENTS,
    ContentType.HOUSING: ModuleId.HOUSING,
    ContentType.SAMPLE_SALE: ModuleId.DEALS,
}

_FAMILIES: Dict[ContentType, TypeFamily] = {
    ContentType.NEWS: TypeFamily.NEWS,
    ContentType.BREAKING_NEWS: TypeFamily.NEWS,
    ContentType.LOCAL_NEWS: TypeFamily.NEWS,
    ContentType.TRANSIT_ALERT: TypeFamily.ALERTS,
    ContentType.TRANSIT_DELAY: TypeFamily.ALERTS,
    ContentType.TRANSIT_OUTAGE: TypeFamily.ALERTS,
    ContentType.TRANSIT_ADVISORY: TypeFamily.ALERTS,
    ContentType.TRANSIT_RESTORATION: TypeFamily.ALERTS,
    ContentType.PARKING_ALERT: TypeFamily.ALERTS,
    ContentType.PARKING_EMERGENCY: TypeFamily.ALERTS,
    ContentType.ASP_STATUS: TypeFamily.ALERTS,
    ContentType.ASP_SUSPENSION: TypeFamily.ALERTS,
    ContentType.ASP_IN_EFFECT: TypeFamily.ALERTS,
    ContentType.ASP_TOMORROW: TypeFamily.ALERTS,
    ContentType.METER_STATUS: TypeFamily.ALERTS,
    ContentType.STREET_CLOSURE: TypeFamily.ALERTS,
    ContentType.WEATHER_DAILY: TypeFamily.ALERTS,
    ContentType.WEATHER_ADVISORY: TypeFamily.ALERTS,
    ContentType.WEATHER_SEVERE: TypeFamily.ALERTS,
    ContentType.EVENT: TypeFamily.EVENTS,
    ContentType.EVENT_REMINDER: TypeFamily.EVENTS,
    ContentType.SAMPLE_SALE: TypeFamily.SAMPLE_SALES,
}


class UrgencyClass(str, Enum):
    URGENT = "urgent"
    TIME_SENSITIVE = "time_sensitive"
    EVERGREEN = "evergreen"
    BATCHABLE = "batchable"


class TransitSeverity(str, Enum):
    INFO = "info"
    PLANNED = "planned"
    MINOR = "minor"
    MAJOR = "major"
    OUTAGE = "outage"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @property
    def is_actionable(self) -> bool:
        return self in (TransitSeverity.MAJOR, TransitSeverity.OUTAGE)


_SEVERITY_RANK = {
    TransitSeverity.INFO: 0,
    TransitSeverity.PLANNED: 1,
    TransitSeverity.MINOR: 2,
    TransitSeverity.MAJOR: 3,
    TransitSeverity.OUTAGE: 4,
}


class Slot(str, Enum):
    MORNING = "morning"
    MIDDAY = "midday"
    EVENING = "evening"

    @property
    def next(self) -> "Slot":
        """Next chronological slot; evening rolls over to the next morning."""
        order = list(Slot)
        return order[(order.index(self) + 1) % len(order)]


class Eligibility(str, Enum):
    REQUIRED = "required"
    PREFERRED = "preferred"
    ALLOWED = "allowed"
    FALLBACK = "fallback"
    EXCLUDED = "excluded"


class Tier(str, Enum):
    FREE = "free"
    PREMIUM = "premium"


class DigestMode(str, Enum):
    ENHANCED = "enhanced"
    STANDARD = "standard"
    FALLBACK = "fallback"
    LOCKED = "locked"


@dataclass(frozen=True)
class ContentItem:
    """
    Canonical representation of a piece of curated content.
    """
    id: str
    source: str
    external_id: str
    content_type: ContentType
    title: str
    body: str
    dedup_key: str
    urgency: UrgencyClass
    created_at: datetime
    priority_score: float = 0.0
    severity: Optional[TransitSeverity] = None
    tags: FrozenSet[str] = frozenset()
    trust_tier: int = 2
    url: Optional[str] = None
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    version: int = 1
    status_changed: bool = False

    @property
    def module_id(self) -> ModuleId:
        return self.content_type.module

    @property
    def is_batchable(self) -> bool:
        return self.urgency is UrgencyClass.BATCHABLE

    @property
    def is_actionable(self) -> bool:
        """Non-actionable transit alerts never reach a slot."""
        if not self.content_type.is_transit_alert or self.severity is None:
            return True
        return self.severity.is_actionable


@dataclass(frozen=True)
class User:
    id: str
    email: str
    tier: Tier = Tier.FREE
    slots: FrozenSet[Slot] = frozenset({Slot.MORNING})


@dataclass(frozen=True)
class SendRecord:
    """
    One delivered (item, version) pair for a user on a given day and slot.
    """
    user_id: str
    day: date
    slot: str
    item_id: str
    version: int
    severity: Optional[TransitSeverity] = None


@dataclass(frozen=True)
class DeliveredItem:
    version: int
    severity: Optional[TransitSeverity] = None


@dataclass(frozen=True)
class UserSendState:
    """
    What a user already received today.
    `delivered` maps item id to the highest version delivered.
    """
    sends_today: int = 0
    slots_sent: FrozenSet[str] = frozenset()
    delivered: Mapping[str, DeliveredItem] = field(default_factory=dict)


@dataclass(frozen=True)
class DigestEntry:
    """
    Final digest-ready unit of information.
    """
    item_id: str
    title: str
    summary: str
    module: ModuleId
    url: Optional[str] = None
    is_escalation: bool = False
    is_urgent: bool = False


@dataclass
class StoryCluster:
    """
    Group of items the enhancer considers the same story.
    """
    id: int
    title: str
    summary: str
    item_ids: List[str] = field(default_factory=list)


@dataclass
class Digest:
    slot: str
    day: date
    mode: DigestMode
    sections: Dict[ModuleId, List[DigestEntry]] = field(default_factory=dict)
    briefing: str = ""
    clusters: List[StoryCluster] = field(default_factory=list)
    horizon: List[str] = field(default_factory=list)

    @property
    def entries(self) -> List[DigestEntry]:
        return [entry for section in self.sections.values() for entry in section]
