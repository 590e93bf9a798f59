"""
JSON conversion for Firestore values returned by the dashboard endpoints
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Any


def is_reference(value: Any) -> bool:
    """DocumentReference duck-typing: has a path and a parent collection"""
    return hasattr(value, "path") and hasattr(value, "parent") and hasattr(value, "id")


def to_jsonable(obj: Any) -> Any:
    """Convert non-JSON-serializable types (Decimal, datetime, references, geo points) to safe values"""
    if obj is None or isinstance(obj, (bool, int, float, str)):
        return obj
    if isinstance(obj, Decimal):
        return int(obj) if obj % 1 == 0 else float(obj)
    if isinstance(obj, (datetime, date)):
        # Firestore DatetimeWithNanoseconds inherits from datetime
        return obj.isoformat()
    if is_reference(obj):
        return obj.path
    if hasattr(obj, "latitude") and hasattr(obj, "longitude"):
        return {"latitude": obj.latitude, "longitude": obj.longitude}
    if hasattr(obj, "to_dict") and callable(obj.to_dict):
        return to_jsonable(obj.to_dict())
    if isinstance(obj, dict):
        return {str(key): to_jsonable(value) for key, value in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [to_jsonable(item) for item in obj]
    return str(obj)
