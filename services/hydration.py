"""
Reference hydration: resolve DocumentReference fields to display labels
"""
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

logger = logging.getLogger(__name__)

FALLBACK_LABEL = "Unknown"
NAME_KEYS = ("customer_name", "display_name", "name", "username")


@dataclass(frozen=True)
class DisplayInfo:
    name: str
    phone: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def display_name(data: Optional[Dict[str, Any]], keys: Sequence[str] = NAME_KEYS, fallback: str = FALLBACK_LABEL) -> str:
    """First non-empty name field of a user document"""
    if not data:
        return fallback
    for key in keys:
        value = data.get(key)
        if value:
            return str(value)
    return fallback


def display_phone(data: Optional[Dict[str, Any]]) -> Optional[str]:
    if not data:
        return None
    phone = data.get("phone_number")
    if phone:
        return str(phone)
    contact = data.get("contact_no")
    return str(contact) if contact else None


def ref_path(ref: Any) -> str:
    """Path of a reference, or '' for missing and non-reference values"""
    return getattr(ref, "path", "") or ""


def ref_id(ref: Any) -> str:
    """Document id of a reference; plain strings are treated as ids"""
    if ref is None:
        return ""
    if isinstance(ref, str):
        return ref
    return getattr(ref, "id", "") or ""


def unique_refs(refs: Iterable[Any]) -> List[Any]:
    """Drop empty values and keep the first reference seen for each path"""
    seen: Dict[str, Any] = {}
    for ref in refs:
        path = ref_path(ref)
        if path and path not in seen:
            seen[path] = ref
    return list(seen.values())


class ReferenceHydrator:
    """Builds ``path -> DisplayInfo`` lookup maps for table rendering.

    All unique references are read with a single batched ``get_all`` call
    instead of one read per row. Every requested path ends up in the map:
    either with the resolved name or with the fallback label. Paths that were
    not requested never appear.
    """

    def __init__(self, firestore_service, name_keys: Sequence[str] = NAME_KEYS):
        self.firestore_service = firestore_service
        self.name_keys = name_keys

    def hydrate(self, refs: Iterable[Any], fallback: str = FALLBACK_LABEL) -> Dict[str, DisplayInfo]:
        targets = unique_refs(refs)
        lookup: Dict[str, DisplayInfo] = {ref_path(ref): DisplayInfo(name=fallback) for ref in targets}
        if not targets:
            return lookup

        try:
            snapshots = self.firestore_service.get_all(targets)
        except Exception as e:
            logger.error(f"Failed to hydrate {len(targets)} references: {e}")
            return lookup

        for snap in snapshots:
            path = ref_path(getattr(snap, "reference", None))
            if path not in lookup or not snap.exists:
                continue
            data = snap.to_dict() or {}
            lookup[path] = DisplayInfo(
                name=display_name(data, self.name_keys, fallback),
                phone=display_phone(data),
            )
        return lookup

    def label_for(self, lookup: Dict[str, DisplayInfo], ref: Any, fallback: str = FALLBACK_LABEL) -> DisplayInfo:
        return lookup.get(ref_path(ref)) or DisplayInfo(name=fallback)
