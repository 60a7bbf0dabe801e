# services/slots.py
from datetime import datetime, timedelta
from typing import Iterable, List, NamedTuple, Optional

from services.errors import BookingValidationError


class Interval(NamedTuple):
    """Полуоткрытый интервал [start, end)."""
    start: datetime
    end: datetime


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and b_start < a_end


def conflicts(candidate: Interval, busy: Iterable[Interval], padding: timedelta = timedelta(0)) -> bool:
    """True, если кандидат задевает занятый интервал, расширенный на padding с обеих сторон."""
    return any(
        overlaps(candidate.start, candidate.end, b.start - padding, b.end + padding)
        for b in busy
    )


def compute_free_slots(
    window: Optional[Interval],
    busy: Iterable[Interval],
    duration_minutes: int,
    step_minutes: int,
    now: Optional[datetime] = None,
    padding_minutes: int = 0,
    blocked: Iterable[Interval] = (),
) -> List[datetime]:
    """Свободные времена начала внутри рабочего окна, по возрастанию.

    `busy` - неотмененные записи мастера, `blocked` - разовые блокировки.
    Кандидаты идут от начала окна с шагом `step_minutes`. Каждый должен
    целиком помещаться до конца окна, начинаться не раньше `now` и не
    пересекаться ни с записью (с учетом перерыва мастера), ни с блокировкой.
    """
    if duration_minutes <= 0:
        raise BookingValidationError("Service duration must be positive")
    if step_minutes <= 0:
        raise BookingValidationError("Slot step must be positive")
    if window is None or window.start >= window.end:
        return []

    duration = timedelta(minutes=duration_minutes)
    step = timedelta(minutes=step_minutes)
    padding = timedelta(minutes=padding_minutes)
    busy = list(busy)
    blocked = list(blocked)

    slots = []
    slot_start = window.start
    while slot_start + duration <= window.end:
        candidate = Interval(slot_start, slot_start + duration)
        if now is not None and slot_start < now:
            slot_start += step
            continue
        if not conflicts(candidate, busy, padding) and not conflicts(candidate, blocked):
            slots.append(slot_start)
        slot_start += step
    return slots
