"""
Stable content fingerprints and title similarity.
"""
import re
import unicodedata
from typing import Callable, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from rapidfuzz import fuzz

from nycping.core.entities import ContentType

SimilarityFn = Callable[[str, str], float]

TRACKING_KEYS_EXACT = {"ref", "fbclid", "gclid", "mc_cid", "mc_eid"}
TRACKING_PREFIXES = ("utm_",)

_PUNCT_RE = re.compile(r"[^\w\s]", re.UNICODE)
_WS_RE = re.compile(r"\s+")


def normalize_title(title: str) -> str:
    """
    Locale-insensitive normalization: fold accents, lowercase,
    strip punctuation, collapse whitespace.
    """
    folded = unicodedata.normalize("NFKD", title or "")
    folded = "".join(ch for ch in folded if not unicodedata.combining(ch))
    folded = folded.casefold().replace("_", " ")
    folded = _PUNCT_RE.sub(" ", folded)
    return _WS_RE.sub(" ", folded).strip()


def generate_dedup_key(content_type: ContentType, title: str) -> str:
    return f"{ContentType(content_type).value}:{normalize_title(title)}"


def story_key(title: str) -> str:
    """Type-agnostic key used when comparing across content types."""
    return normalize_title(title)


def title_similarity(a: str, b: str) -> float:
    """Token-sorted normalized edit similarity in [0, 1]."""
    left, right = normalize_title(a), normalize_title(b)
    if not left or not right:
        return 0.0
    return fuzz.token_sort_ratio(left, right) / 100.0


_FINGERPRINT_PATTERNS = tuple(re.compile(p) for p in (
    r"\b\d+\b",
    r"\b(?:queens|brooklyn|bronx|manhattan|staten island)\b",
    r"\b(?:mta|subway|train|bus|ferry)\b",
    r"\b(?:fire|crash|delay|accident|shooting|arrest|protest)\b",
    r"\b[a-z] train\b",
))
MIN_FINGERPRINT_LENGTH = 6


def content_fingerprint(title: str) -> str:
    """
    Sorted key entities of a title: numbers, boroughs, transit words, incident
    words and train lines. Rephrased headlines about one event share it.
    Returns "" when the title carries too few entities to be trusted.
    """
    text = (title or "").lower()
    entities = [match for pattern in _FINGERPRINT_PATTERNS for match in pattern.findall(text)]
    fingerprint = "|".join(sorted(entities[:6]))
    return fingerprint if len(fingerprint) >= MIN_FINGERPRINT_LENGTH else ""


def canonical_url(url: Optional[str]) -> str:
    """Drop tracking params, fragments and trailing slashes so reposts compare equal."""
    if not url:
        return ""
    parsed = urlparse(url.strip())
    query = [
        (k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True)
        if k.lower() not in TRACKING_KEYS_EXACT
        and not k.lower().startswith(TRACKING_PREFIXES)
    ]
    path = parsed.path.rstrip("/") or "/"
    return urlunparse((
        parsed.scheme.lower(),
        parsed.netloc.lower().removeprefix("www."),
        path,
        "",
        urlencode(sorted(query)),
        "",
    ))
