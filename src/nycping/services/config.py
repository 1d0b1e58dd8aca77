"""
Loads and handles config from config.yml
Email credentials (EMAIL_USERNAME, EMAIL_PASSWORD, ADMIN_ALERT_EMAIL) are loaded from .env for security
"""
import logging
import os
from typing import Any, Dict, List, Optional, Tuple

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from nycping.core.entities import (
    ContentType,
    Eligibility,
    Slot,
    Tier,
    TransitSeverity,
    UrgencyClass,
)
from nycping.core.errors import ConfigError

logger = logging.getLogger(__name__)

CT = ContentType
E = Eligibility


class SlotCapacity(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_items: int = Field(..., ge=0)
    max_items: int = Field(..., ge=1)

    @model_validator(mode="after")
    def _min_below_max(self):
        if self.min_items > self.max_items:
            raise ValueError("min_items must not exceed max_items")
        return self


def _default_freshness() -> Dict[UrgencyClass, float]:
    return {
        UrgencyClass.URGENT: 1,
        UrgencyClass.TIME_SENSITIVE: 6,
        UrgencyClass.EVERGREEN: 24,
        UrgencyClass.BATCHABLE: 72,
    }


def _default_capacity() -> Dict[Slot, SlotCapacity]:
    return {
        Slot.MORNING: SlotCapacity(min_items=2, max_items=8),
        Slot.MIDDAY: SlotCapacity(min_items=3, max_items=6),
        Slot.EVENING: SlotCapacity(min_items=2, max_items=10),
    }


def _default_urgency() -> Dict[ContentType, UrgencyClass]:
    urgent = (CT.PARKING_EMERGENCY, CT.TRANSIT_OUTAGE, CT.WEATHER_SEVERE, CT.BREAKING_NEWS)
    time_sensitive = (
        CT.TRANSIT_ALERT, CT.TRANSIT_DELAY, CT.TRANSIT_ADVISORY,
        CT.PARKING_ALERT, CT.ASP_STATUS, CT.ASP_SUSPENSION, CT.ASP_IN_EFFECT, CT.ASP_TOMORROW,
        CT.WEATHER_ADVISORY, CT.EVENT_REMINDER, CT.STREET_CLOSURE,
    )
    batchable = (CT.TIPS, CT.NEIGHBORHOOD_UPDATE, CT.WEEKLY_RECAP)

    table = {}
    for content_type in ContentType:
        if content_type in urgent:
            table[content_type] = UrgencyClass.URGENT
        elif content_type in time_sensitive:
            table[content_type] = UrgencyClass.TIME_SENSITIVE
        elif content_type in batchable:
            table[content_type] = UrgencyClass.BATCHABLE
        else:
            table[content_type] = UrgencyClass.EVERGREEN
    return table


def _default_priority() -> Dict[ContentType, float]:
    return {
        CT.PARKING_EMERGENCY: 95,
        CT.WEATHER_SEVERE: 95,
        CT.TRANSIT_OUTAGE: 90,
        CT.BREAKING_NEWS: 85,
        CT.ASP_STATUS: 80,
        CT.ASP_SUSPENSION: 80,
        CT.ASP_IN_EFFECT: 80,
        CT.TRANSIT_DELAY: 75,
        CT.WEATHER_ADVISORY: 70,
        CT.ASP_TOMORROW: 65,
        CT.TRANSIT_ALERT: 60,
        CT.TRANSIT_ADVISORY: 60,
        CT.PARKING_ALERT: 60,
        CT.STREET_CLOSURE: 60,
        CT.EVENT_REMINDER: 55,
        CT.WEATHER_DAILY: 50,
        CT.EVENT: 50,
        CT.NEWS: 45,
        CT.LOCAL_NEWS: 45,
        CT.HOUSING: 45,
        CT.TRANSIT_RESTORATION: 40,
        CT.METER_STATUS: 40,
        CT.SAMPLE_SALE: 40,
        CT.NEIGHBORHOOD_UPDATE: 35,
        CT.TIPS: 25,
        CT.WEEKLY_RECAP: 20,
    }


def _default_eligibility() -> Dict[ContentType, Dict[Slot, Eligibility]]:
    overrides = {
        Slot.MORNING: {
            E.REQUIRED: (CT.ASP_STATUS, CT.WEATHER_DAILY),
            E.PREFERRED: (
                CT.TRANSIT_DELAY, CT.TRANSIT_ADVISORY, CT.WEATHER_ADVISORY,
                CT.EVENT_REMINDER, CT.STREET_CLOSURE,
                CT.PARKING_EMERGENCY, CT.TRANSIT_OUTAGE, CT.WEATHER_SEVERE,
            ),
            E.FALLBACK: (CT.METER_STATUS, CT.HOUSING),
            E.EXCLUDED: (CT.ASP_TOMORROW, CT.WEEKLY_RECAP, CT.NEIGHBORHOOD_UPDATE),
        },
        Slot.MIDDAY: {
            E.PREFERRED: (
                CT.BREAKING_NEWS, CT.LOCAL_NEWS, CT.NEWS, CT.TRANSIT_DELAY,
                CT.TRANSIT_RESTORATION, CT.WEATHER_ADVISORY,
                CT.PARKING_EMERGENCY, CT.TRANSIT_OUTAGE, CT.WEATHER_SEVERE,
            ),
            E.FALLBACK: (CT.METER_STATUS,),
            E.EXCLUDED: (CT.ASP_TOMORROW, CT.WEEKLY_RECAP),
        },
        Slot.EVENING: {
            E.REQUIRED: (CT.ASP_TOMORROW,),
            E.PREFERRED: (
                CT.WEATHER_ADVISORY, CT.TRANSIT_ADVISORY, CT.EVENT_REMINDER,
                CT.LOCAL_NEWS, CT.NEIGHBORHOOD_UPDATE,
                CT.PARKING_EMERGENCY, CT.TRANSIT_OUTAGE, CT.WEATHER_SEVERE,
            ),
            E.FALLBACK: (CT.METER_STATUS, CT.HOUSING, CT.WEEKLY_RECAP),
            E.EXCLUDED: (CT.ASP_STATUS, CT.ASP_IN_EFFECT, CT.WEATHER_DAILY),
        },
    }

    matrix = {content_type: {slot: E.ALLOWED for slot in Slot} for content_type in ContentType}
    for slot, rows in overrides.items():
        for eligibility, content_types in rows.items():
            for content_type in content_types:
                matrix[content_type][slot] = eligibility
    return matrix


def _default_domain_keywords() -> Dict[str, Tuple[str, ...]]:
    return {
        "boroughs": ("manhattan", "brooklyn", "queens", "bronx", "staten island", "nyc", "new york city"),
        "neighborhoods": (
            "harlem", "williamsburg", "astoria", "bushwick", "chelsea", "soho", "tribeca",
            "park slope", "flushing", "long island city", "greenpoint", "east village",
            "upper west side", "upper east side", "midtown", "lower east side",
        ),
        "transit": ("mta", "subway", "bus", "lirr", "metro-north", "path", "ferry", "train", "station"),
        "landmarks": ("times square", "central park", "grand central", "penn station", "brooklyn bridge"),
        "government": ("nypd", "fdny", "dot", "dsny", "hpd", "city council", "mayor", "311", "notify nyc"),
        "impact": (
            "suspended", "closed", "closure", "emergency", "evacuation", "shutdown", "deadline",
            "lottery", "rent", "fare", "tow", "ticket", "storm", "flood", "heat advisory",
        ),
    }


def _default_off_topic() -> Tuple[str, ...]:
    return (
        "sponsored", "horoscope", "celebrity", "gossip", "recipe", "quiz",
        "giveaway", "advertisement", "crossword", "opinion:",
    )


def _default_suppression() -> Tuple[str, ...]:
    return (
        r"\belevators?\b",
        r"\bescalators?\b",
        r"expect (?:minor )?delays? (?:of )?(?:up to |under |less than )?(?:[1-9]|10)\s*min",
        r"\bboard (?:the )?(?:first|last|front|rear)\b",
        r"\bboard (?:at|from) the (?:front|rear|other)\b",
    )


def _default_severity_rules() -> Tuple[Tuple[TransitSeverity, Tuple[str, ...]], ...]:
    # First matching rule wins.
    return (
        (TransitSeverity.PLANNED, (
            r"\bplanned (?:work|maintenance)\b",
            r"\bweekend service changes?\b",
            r"\btrack work\b",
            r"\bscheduled (?:track )?work\b",
            r"\bovernight\b",
            r"\bthis weekend\b",
        )),
        (TransitSeverity.OUTAGE, (
            r"\bno (?:\w+ )?service\b",
            r"\bsuspended\b",
            r"\bsuspension\b",
            r"\bnot running\b",
            r"\bemergency\b",
            r"\bevacuat\w*",
            r"\bbypassing\b",
        )),
        (TransitSeverity.MINOR, (
            r"\b(?:minor|slight|residual) delays\b",
        )),
        (TransitSeverity.MAJOR, (
            r"\b(?:significant|severe|major|extensive) delays\b",
            r"\breroute[sd]?\b",
            r"\bdisrupted\b",
            r"\bdisruptions?\b",
            r"\bsignal (?:problems?|issues?|malfunctions?)\b",
            r"\brunning (?:on|via) the (?:express|local)\b",
            r"\bpolice activity\b",
            r"\bsick (?:passenger|customer)\b",
        )),
        (TransitSeverity.MINOR, (
            r"\bdelays?\b",
            r"\bslower\b",
        )),
    )


def _default_severity_scores() -> Dict[TransitSeverity, float]:
    return {
        TransitSeverity.OUTAGE: 100,
        TransitSeverity.MAJOR: 80,
        TransitSeverity.MINOR: 40,
        TransitSeverity.PLANNED: 25,
        TransitSeverity.INFO: 10,
    }


class CurationConfig(BaseModel):
    """
    Immutable curation tables. Built once at start-up and passed explicitly
    to every component; tests override individual tables with model_copy().
    """
    model_config = ConfigDict(frozen=True)

    timezone: str = "America/New_York"

    freshness_hours: Dict[UrgencyClass, float] = Field(default_factory=_default_freshness)
    slot_capacity: Dict[Slot, SlotCapacity] = Field(default_factory=_default_capacity)
    slot_hours: Dict[Slot, int] = Field(
        default_factory=lambda: {Slot.MORNING: 9, Slot.MIDDAY: 12, Slot.EVENING: 18}
    )
    default_urgency: Dict[ContentType, UrgencyClass] = Field(default_factory=_default_urgency)
    default_priority: Dict[ContentType, float] = Field(default_factory=_default_priority)
    eligibility: Dict[ContentType, Dict[Slot, Eligibility]] = Field(default_factory=_default_eligibility)

    # Dedup
    ingestion_window_hours: float = 24
    cross_source_window_hours: float = 48
    similarity_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    cross_type_fuzzy: bool = True

    # Scoring
    trust_tiers: Dict[str, int] = Field(default_factory=dict)
    default_trust_tier: int = 3
    tier_base_scores: Dict[int, float] = Field(default_factory=lambda: {1: 60, 2: 50, 3: 40})
    domain_keywords: Dict[str, Tuple[str, ...]] = Field(default_factory=_default_domain_keywords)
    off_topic_keywords: Tuple[str, ...] = Field(default_factory=_default_off_topic)
    keyword_boost: float = 0.1
    max_keyword_boost: float = 0.5
    off_topic_penalty: float = 0.15
    min_penalty_factor: float = 0.4
    status_change_bonus: float = 10
    transit_suppression_patterns: Tuple[str, ...] = Field(default_factory=_default_suppression)
    transit_severity_rules: Tuple[Tuple[TransitSeverity, Tuple[str, ...]], ...] = Field(
        default_factory=_default_severity_rules
    )
    transit_severity_scores: Dict[TransitSeverity, float] = Field(default_factory=_default_severity_scores)

    # Sending
    frequency_caps: Dict[Tier, int] = Field(default_factory=lambda: {Tier.FREE: 1, Tier.PREMIUM: 3})
    quiet_hours_start: int = Field(default=22, ge=0, le=23)
    quiet_hours_end: int = Field(default=7, ge=0, le=23)
    immediate_priority: float = 80

    def eligibility_for(self, content_type: ContentType, slot: Slot) -> Eligibility:
        return self.eligibility.get(content_type, {}).get(slot, Eligibility.ALLOWED)

    def urgency_for(self, content_type: ContentType) -> UrgencyClass:
        return self.default_urgency.get(content_type, UrgencyClass.EVERGREEN)

    def trust_tier_for(self, source: str) -> int:
        return self.trust_tiers.get(source.lower(), self.default_trust_tier)

    @property
    def max_freshness_hours(self) -> float:
        return max(self.freshness_hours.values())


class SourceConfig(BaseModel):
    """Configuration for a single ingestion source."""
    type: str  # mta, rss, housing, sample_sales, weather, asp
    name: str
    enabled: bool = True
    url: Optional[str] = None  # For mta and json feeds; weather and asp have defaults
    feeds: Optional[List[str]] = None  # For rss
    content_type: Optional[str] = None


class EmailColorsConfig(BaseModel):
    """Configuration for email template colors."""
    primary: str = "#0039a6"
    primary_dark: str = "#002a7a"
    secondary: str = "#00933c"
    background: str = "#f8fafc"
    card_bg: str = "#ffffff"
    text_primary: str = "#1e293b"
    text_secondary: str = "#64748b"
    border: str = "#e2e8f0"
    accent: str = "#fccc0a"
    escalation_bg: str = "#fef3c7"
    escalation_text: str = "#92400e"


class AppConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    # Core
    DATABASE_PATH: str = "data/nycping.db"
    OUTPUT_DIR: str = "output"
    SCRAPE_TIMEOUT_SECONDS: float = 30.0
    RETENTION_DAYS: int = 30

    # Ollama
    LLM_ENABLED: bool = True
    OLLAMA_BASE_URL: str = "http://localhost:11434"
    OLLAMA_MODEL: str = "llama3.1:8b"

    # Digest job
    ENHANCED_TIMEOUT_SECONDS: float = 120.0
    MIN_SECTION_ITEMS: int = 2
    LOCK_TTL_SECONDS: int = 3600
    MAX_CONCURRENCY: int = 5

    # Email
    EMAIL_ENABLED: bool = False
    EMAIL_SMTP_HOST: Optional[str] = None
    EMAIL_SMTP_PORT: Optional[int] = None
    EMAIL_USERNAME: Optional[str] = None
    EMAIL_PASSWORD: Optional[str] = None
    EMAIL_FROM: Optional[str] = None
    ADMIN_ALERT_EMAIL: Optional[str] = None
    email_colors: EmailColorsConfig = EmailColorsConfig()

    sources: List[SourceConfig] = []
    curation: CurationConfig = CurationConfig()


def _bool(value: str | bool) -> bool:
    """Convert string or bool to boolean."""
    if isinstance(value, bool):
        return value
    return str(value).lower() in ("1", "true", "yes", "on")


def _get_config_path() -> str:
    """Get the path to config.yml, handling different working directories."""
    env_path = os.getenv("NYCPING_CONFIG")
    if env_path:
        if not os.path.exists(env_path):
            raise ConfigError(f"NYCPING_CONFIG points to a missing file: {env_path}")
        return env_path

    # Try relative path first
    if os.path.exists('resources/config.yml'):
        return 'resources/config.yml'

    # Try from project root
    project_root = os.path.dirname(
        os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    )
    config_path = os.path.join(project_root, 'resources', 'config.yml')
    if os.path.exists(config_path):
        return config_path

    raise ConfigError("Cannot find resources/config.yml")


def _parse_sources(data: List[Dict[str, Any]]) -> List[SourceConfig]:
    sources = []
    for src in data or []:
        try:
            sources.append(SourceConfig(**src))
        except ValidationError as e:
            logger.error(f"Failed to parse source '{src.get('name', '?')}': {e}")
    return sources


def parse_curation_config(data: Optional[Dict[str, Any]]) -> CurationConfig:
    """
    Build curation tables from the `curation` block of config.yml.
    Eligibility rows are merged over the defaults instead of replacing the whole matrix.
    """
    data = dict(data or {})
    eligibility_overrides = data.pop("eligibility", None) or {}

    try:
        curation = CurationConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid curation config: {e}") from e

    if not eligibility_overrides:
        return curation

    matrix = {ct: dict(row) for ct, row in curation.eligibility.items()}
    for content_type, row in eligibility_overrides.items():
        try:
            ct = ContentType(content_type)
            for slot, eligibility in row.items():
                matrix[ct][Slot(slot)] = Eligibility(eligibility)
        except ValueError as e:
            raise ConfigError(f"Invalid eligibility override for '{content_type}': {e}") from e

    return curation.model_copy(update={"eligibility": matrix})


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load configuration from config.yml and credentials from .env."""
    # Load .env for sensitive credentials
    load_dotenv()

    config_path = path or _get_config_path()

    with open(config_path, 'r') as file:
        config = yaml.safe_load(file) or {}

    return AppConfig(
        DATABASE_PATH=config.get("DATABASE_PATH", "data/nycping.db"),
        OUTPUT_DIR=config.get("OUTPUT_DIR", "output"),
        SCRAPE_TIMEOUT_SECONDS=float(config.get("SCRAPE_TIMEOUT_SECONDS", 30)),
        RETENTION_DAYS=int(config.get("RETENTION_DAYS", 30)),

        LLM_ENABLED=_bool(config.get("LLM_ENABLED", True)),
        OLLAMA_BASE_URL=config.get("OLLAMA_BASE_URL", "http://localhost:11434"),
        OLLAMA_MODEL=config.get("OLLAMA_MODEL", "llama3.1:8b"),

        ENHANCED_TIMEOUT_SECONDS=float(config.get("ENHANCED_TIMEOUT_SECONDS", 120)),
        MIN_SECTION_ITEMS=int(config.get("MIN_SECTION_ITEMS", 2)),
        LOCK_TTL_SECONDS=int(config.get("LOCK_TTL_SECONDS", 3600)),
        MAX_CONCURRENCY=int(config.get("MAX_CONCURRENCY", 5)),

        EMAIL_ENABLED=_bool(config.get("EMAIL_ENABLED", False)),
        EMAIL_SMTP_HOST=config.get("EMAIL_SMTP_HOST"),
        EMAIL_SMTP_PORT=int(config.get("EMAIL_SMTP_PORT", 587)) if config.get("EMAIL_SMTP_PORT") else None,
        EMAIL_USERNAME=os.getenv("EMAIL_USERNAME"),
        EMAIL_PASSWORD=os.getenv("EMAIL_PASSWORD"),
        EMAIL_FROM=config.get("EMAIL_FROM"),
        ADMIN_ALERT_EMAIL=os.getenv("ADMIN_ALERT_EMAIL"),
        email_colors=EmailColorsConfig(**config.get("email_colors", {})),

        sources=_parse_sources(config.get("sources", [])),
        curation=parse_curation_config(config.get("curation")),
    )


def get_enabled_sources(config: AppConfig) -> List[SourceConfig]:
    """Get only enabled sources."""
    return [src for src in config.sources if src.enabled]
