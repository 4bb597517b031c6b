from __future__ import annotations

from typing import Callable, Dict, Optional

from .schedule import ScheduleEntry


_PLACEHOLDERS: Dict[str, Callable[[ScheduleEntry], Optional[str]]] = {
    "supplierName": lambda e: e.supplier_name,
    "supplierReading": lambda e: e.supplier_reading,
    "materialReading": lambda e: e.material_reading,
    "arrivalTime": lambda e: e.arrival_time,
    "finishTime": lambda e: e.finish_time,
    "lane": lambda e: e.lane,
    "preparation": lambda e: e.preparation,
    "yard": lambda e: e.yard,
    "note": lambda e: e.note,
}


def format_speech(template: str, entry: ScheduleEntry) -> str:
    """
    Fill {placeholders} in a speech template from an entry.
    Unknown placeholders are left as-is; missing values become "".
    """
    out = template or ""
    for key, getter in _PLACEHOLDERS.items():
        out = out.replace("{" + key + "}", getter(entry) or "")
    return out


def format_display_message(template: str, before_minutes: int) -> str:
    return (template or "").replace("{beforeMinutes}", str(before_minutes))
