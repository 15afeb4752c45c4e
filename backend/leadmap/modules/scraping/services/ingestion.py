"""
Scraped Batch Ingestion
Normalizes raw worker items into scraping_results rows and drops the ones
the owner already has.

Deduplication key: normalized "business name|address", scoped to the owning
user. Re-delivering a batch that was already ingested yields zero new rows,
which is what makes at-least-once callbacks safe without locking.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from leadmap.modules.scraping.constants import NO_EMAIL_SENTINEL, UNNAMED_BUSINESS
from leadmap.shared.utils.json_utils import safe_json_parse

logger = logging.getLogger("scraping_ingestion")


# Worker field names (French) first, then English aliases
FIELD_ALIASES = {
    "business_name": ("Titre", "business_name", "title"),
    "street": ("Rue", "street"),
    "city": ("Ville", "city"),
    "postal_code": ("Code postal", "postal_code"),
    "address": ("address",),
    "email": ("Email", "email"),
    "website": ("Site web", "website"),
    "phone": ("Téléphone", "phone"),
    "rating": ("Score total", "rating"),
    "reviews_count": ("Nombre d'avis", "reviews_count"),
    "category": ("Nom de catégorie", "category"),
    "maps_url": ("URL Google Maps", "maps_url"),
    "opening_hours": ("Heures d'ouverture", "opening_hours"),
    "info": ("Infos", "info"),
    "summary": ("Résumé", "summary"),
}


@dataclass
class IngestionPlan:
    rows: List[Dict[str, Any]] = field(default_factory=list)
    count: int = 0
    emails_found: int = 0
    skipped_duplicates: int = 0
    invalid_items: int = 0


@dataclass
class IngestionReport:
    """What happened to one batch; surfaced in the webhook response."""
    status: str  # "ingested" | "skipped" | "rejected" | "failed"
    inserted: int = 0
    skipped_duplicates: int = 0
    invalid_items: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "inserted": self.inserted,
            "skipped_duplicates": self.skipped_duplicates,
            "invalid_items": self.invalid_items,
            "error": self.error,
        }


def _pick(item: Dict[str, Any], name: str) -> Any:
    for key in FIELD_ALIASES[name]:
        value = item.get(key)
        if value not in (None, ""):
            return value
    return None


def _clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_email(value: Any) -> Optional[str]:
    """Keep an email only if present, not the sentinel and containing '@'."""
    email = _clean_text(value)
    if not email or email == NO_EMAIL_SENTINEL or "@" not in email:
        return None
    return email


def normalize_phone(value: Any) -> Optional[str]:
    """Numbers come without their '+'; strings are passed through as-is."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return f"+{value}"
    if isinstance(value, float) and value.is_integer():
        return f"+{int(value)}"
    return _clean_text(value)


def build_address(item: Dict[str, Any]) -> Optional[str]:
    """street, postal code, city; empty parts skipped."""
    parts = [_clean_text(_pick(item, name)) for name in ("street", "postal_code", "city")]
    address = ", ".join(part for part in parts if part)
    if address:
        return address
    return _clean_text(_pick(item, "address"))


def natural_key(business_name: str, address: Optional[str]) -> str:
    """Case- and whitespace-insensitive "name|address" key."""
    name = " ".join(business_name.split()).casefold()
    addr = " ".join((address or "").split()).casefold()
    return f"{name}|{addr}"


def _as_float(value: Any) -> Optional[float]:
    try:
        return float(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(float(value)) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def normalize_item(item: Dict[str, Any], session_id: str, owner_id: str) -> Dict[str, Any]:
    """Map one raw scraped item to a scraping_results row."""
    business_name = _clean_text(_pick(item, "business_name")) or UNNAMED_BUSINESS
    address = build_address(item)
    opening_hours = _pick(item, "opening_hours")
    info = _pick(item, "info")

    return {
        "session_id": session_id,
        "owner_id": owner_id,
        "natural_key": natural_key(business_name, address),
        "business_name": business_name,
        "address": address,
        "phone": normalize_phone(_pick(item, "phone")),
        "email": normalize_email(_pick(item, "email")),
        "website": _clean_text(_pick(item, "website")),
        "rating": _as_float(_pick(item, "rating")),
        "reviews_count": _as_int(_pick(item, "reviews_count")),
        "category": _clean_text(_pick(item, "category")),
        "maps_url": _clean_text(_pick(item, "maps_url")),
        "opening_hours": safe_json_parse(opening_hours, default=opening_hours),
        "info": safe_json_parse(info, default=info),
        "summary": _clean_text(_pick(item, "summary")),
        "raw_data": item,
    }


def count_emails(items: Iterable[Any]) -> int:
    """Number of items carrying a usable email address."""
    return sum(
        1 for item in items
        if isinstance(item, dict) and normalize_email(_pick(item, "email"))
    )


def plan_ingestion(
    session_id: str,
    owner_id: str,
    items: List[Any],
    existing_keys: Set[str],
    count_override: Optional[int] = None,
) -> IngestionPlan:
    """
    Split a batch into rows to insert and duplicates to drop.

    existing_keys are the natural keys the owner already has across all of
    their sessions. Keys repeated inside the batch are kept once.
    """
    plan = IngestionPlan(
        count=count_override or len(items),
        emails_found=count_emails(items),
    )
    seen = set(existing_keys)

    for item in items:
        if not isinstance(item, dict):
            plan.invalid_items += 1
            continue

        row = normalize_item(item, session_id, owner_id)
        if row["natural_key"] in seen:
            plan.skipped_duplicates += 1
            continue

        seen.add(row["natural_key"])
        plan.rows.append(row)

    if plan.invalid_items:
        logger.warning(f"Ignored {plan.invalid_items} non-object items in batch for session {session_id}")

    return plan
