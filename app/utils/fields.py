"""
Decoders for loosely-typed venue columns.

Venue rows are written by several forms over time, so list-like columns
(categories, amenities, gallery images, ...) turn up as native lists,
JSON-encoded strings, Python-repr strings, comma lists or camelCase-joined
labels, and object columns (owner info, opening hours, rules) as objects or
JSON strings. Every function here is total: bad input degrades to a best-effort
value and never raises, so nothing past the data-access layer sees raw shapes.
"""
import json
import logging
import math
import re
from decimal import Decimal
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Ordered: longer labels first so "Birthday Parties" wins over "Parties".
KNOWN_CATEGORY_LABELS = (
    "Wedding Venues",
    "Conference Spaces",
    "Party Venues",
    "Corporate Events",
    "Exhibition Halls",
    "Private Dining",
    "Birthday Parties",
    "Exhibitions",
    "Conferences",
    "Graduations",
    "Graduation",
    "Engagements",
    "Engagement",
    "Weddings",
    "Wedding",
    "Meetings",
    "Workshops",
    "Seminars",
    "Concerts",
    "Corporate",
    "Birthday",
    "Parties",
    "Party",
    "Dining",
)

SOCIAL_NETWORKS = ("facebook", "twitter", "instagram", "linkedin")

_CAMEL_BOUNDARY = re.compile(r"([a-z])([A-Z])")
_DIGITS = re.compile(r"\d+")
_WRAPPING = "[]'\" \t\n"


def _clean(item: Any) -> str:
    return str(item).strip(_WRAPPING)


def _clean_all(items) -> list[str]:
    cleaned = (_clean(item) for item in items if item is not None)
    return [item for item in cleaned if item]


def _parse_json_list(text: str) -> Optional[list]:
    if not text.startswith("["):
        return None
    for candidate in (text, text.replace("'", '"')):
        try:
            parsed = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(parsed, list):
            return parsed
    return None


def _extract_known_labels(text: str) -> list[str]:
    """Search-and-remove each known label; unmatched text is dropped."""
    working = text
    found = []
    for label in KNOWN_CATEGORY_LABELS:
        start = working.find(label)
        while start != -1:
            found.append((start, label))
            # blank out instead of deleting so positions keep input order
            working = working[:start] + "\x00" * len(label) + working[start + len(label):]
            start = working.find(label)
    return [label for _, label in sorted(found)]


def normalize_array_field(raw: Any) -> list[str]:
    """Coerce any stored list representation into a list of non-empty strings."""
    if raw is None:
        return []

    if isinstance(raw, (list, tuple, set)):
        return _clean_all(raw)

    if not isinstance(raw, str):
        text = str(raw).strip()
        return [text] if text else []

    text = raw.strip()
    if not text:
        return []

    parsed = _parse_json_list(text)
    if parsed is not None:
        return _clean_all(parsed)

    if "," in text:
        return _clean_all(text.split(","))

    if _CAMEL_BOUNDARY.search(text):
        labels = _extract_known_labels(text)
        if labels:
            return labels
        return _clean_all(_CAMEL_BOUNDARY.sub(r"\1,\2", text).split(","))

    cleaned = _clean(text)
    return [cleaned] if cleaned else []


def _load_json_object(raw: Any, field: str) -> Any:
    if isinstance(raw, (str, bytes)):
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Could not parse %s: %r", field, raw)
            return None
    return raw


def normalize_owner_info(raw: Any) -> Optional[dict]:
    """
    Decode the ``owner_info`` column.

    Returns ``None`` when the column is empty or unreadable; otherwise every
    sub-field is present, defaulting to ``''`` (and ``{}``-style empty links).
    ``user_id`` is the key owner-only actions authorize against.
    """
    if raw is None or raw == "":
        return None
    info = _load_json_object(raw, "owner_info")
    if not isinstance(info, dict):
        return None

    def text(*keys: str) -> str:
        for key in keys:
            value = info.get(key)
            if value not in (None, ""):
                return str(value)
        return ""

    nested_links = info.get("social_links") or info.get("socialLinks") or {}
    if not isinstance(nested_links, dict):
        nested_links = {}

    social_links = {}
    for network in SOCIAL_NETWORKS:
        social_links[network] = (
            text(f"{network}_url", network) or str(nested_links.get(network) or "")
        )

    return {
        "name": text("name"),
        "contact": text("contact"),
        "response_time": text("response_time", "responseTime"),
        "user_id": text("user_id", "userId"),
        "social_links": social_links,
    }


def owner_user_id(raw: Any) -> Optional[str]:
    info = normalize_owner_info(raw)
    if info and info["user_id"]:
        return info["user_id"]
    return None


def normalize_opening_hours(raw: Any) -> Optional[dict]:
    hours = _load_json_object(raw, "opening_hours")
    if not isinstance(hours, dict) or not hours:
        return None
    result = {}
    for day, window in hours.items():
        if isinstance(window, dict):
            result[str(day)] = {
                "open": str(window.get("open") or ""),
                "close": str(window.get("close") or ""),
            }
    return result or None


def normalize_rules(raw: Any) -> Optional[list[dict]]:
    rules = _load_json_object(raw, "rules_and_regulations")
    if isinstance(rules, dict):
        rules = [rules]
    if not isinstance(rules, list) or not rules:
        return None
    result = []
    for rule in rules:
        if isinstance(rule, dict):
            result.append({
                "category": str(rule.get("category") or ""),
                "title": str(rule.get("title") or ""),
                "description": str(rule.get("description") or ""),
            })
        elif isinstance(rule, str) and rule.strip():
            result.append({"category": "", "title": rule.strip(), "description": ""})
    return result or None


def safe_parse_int(value: Any, default: int = 0) -> int:
    """Numbers pass through (truncated, never negative); strings yield their first digit run."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float, Decimal)):
        try:
            return max(int(value), 0)
        except (ValueError, OverflowError):
            return default
    if isinstance(value, str):
        match = _DIGITS.search(value)
        if match:
            return int(match.group(0))
    return default


def safe_parse_float(value: Any, default: float = 0.0) -> float:
    if value is None or isinstance(value, bool):
        return default
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        if not isinstance(value, str):
            return default
        match = re.search(r"\d+(?:\.\d+)?", value.replace(",", ""))
        if not match:
            return default
        parsed = float(match.group(0))
    return parsed if math.isfinite(parsed) else default
