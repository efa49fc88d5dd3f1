"""CLI helper printing the fill level of every timeslot of the open event."""

from __future__ import annotations

import sys
from typing import List

from spendenlauf_core import RegistrationError, RegistrationStore
from spendenlauf_core.store import TimeslotFill


def _format_slot(item: TimeslotFill) -> str:
    slot = item.timeslot
    if item.capacity <= 0:
        return f"{slot.display_time} {slot.name}: {item.current} registered (no limit)"
    line = f"{slot.display_time} {slot.name}: {item.current}/{item.capacity} ({item.percentage:.0f}%)"
    if item.current > item.capacity:
        line += " OVERBOOKED"
    elif item.is_full:
        line += " full"
    return line


def main() -> int:
    store = RegistrationStore()
    try:
        event = store.resolve_active_event()
        fill = store.timeslot_fill(event)
    except (RegistrationError, RuntimeError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    print(f"{event.name} ({event.date or 'no date'})")
    overbooked: List[TimeslotFill] = []
    for item in fill:
        print(f"  {_format_slot(item)}")
        if item.capacity > 0 and item.current > item.capacity:
            overbooked.append(item)

    total = sum(item.current for item in fill)
    print(f"Total: {total} participants in {len(fill)} timeslot(s)")

    return 1 if overbooked else 0


if __name__ == "__main__":
    raise SystemExit(main())
