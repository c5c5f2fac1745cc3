"""Pickup and delivery time slots."""

from datetime import date, datetime

# Same-day slots must start more than this many hours after the current hour.
SAME_DAY_LEAD_HOURS = 2


def available_slots(slots: list[str], on: date, now: datetime) -> list[str]:
    """Slots still bookable for ``on`` as seen at ``now``.

    Past dates have none; future dates have all of them.
    """
    if on < now.date():
        return []
    if on > now.date():
        return list(slots)
    return [slot for slot in slots if _start_hour(slot) > now.hour + SAME_DAY_LEAD_HOURS]


def _start_hour(slot: str) -> int:
    return int(slot.split("-", 1)[0].split(":", 1)[0])
