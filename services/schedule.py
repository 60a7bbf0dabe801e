# services/schedule.py
"""Рабочее время мастеров: недельный график, исключения по датам и блокировки."""
from datetime import date, datetime, time, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

import models
from services.errors import BookingValidationError, NotFoundError
from services.slots import Interval


def get_week_schedule(db: Session, master_id: int) -> List[dict]:
    schedules = db.query(models.Schedule).filter(models.Schedule.master_id == master_id).all()
    db_sched_map = {s.day_of_week: s for s in schedules}
    result = []
    for day in range(1, 8):
        sched = db_sched_map.get(day)
        if sched and sched.is_active:
            result.append({"day_of_week": day, "is_working": True, "start_time": sched.start_time, "end_time": sched.end_time})
        else:
            result.append({"day_of_week": day, "is_working": False, "start_time": time(10, 0), "end_time": time(19, 0)})
    return result


def replace_week_schedule(db: Session, master_id: int, items) -> None:
    """Заменяет недельный график мастера целиком. Коммит делает вызывающий."""
    days = [item.day_of_week for item in items]
    if len(days) != len(set(days)):
        raise BookingValidationError("Each day of week may appear only once")
    db.query(models.Schedule).filter(models.Schedule.master_id == master_id).delete()
    new_schedules = []
    for item in items:
        if not item.is_working:
            continue
        if item.start_time >= item.end_time:
            raise BookingValidationError(f"Day {item.day_of_week}: start time must be before end time")
        new_schedules.append(models.Schedule(
            master_id=master_id, day_of_week=item.day_of_week,
            start_time=item.start_time, end_time=item.end_time, is_active=True,
        ))
    if new_schedules:
        db.add_all(new_schedules)


def get_exception(db: Session, master_id: int, day: date) -> Optional[models.ScheduleException]:
    return db.query(models.ScheduleException).filter(
        models.ScheduleException.master_id == master_id,
        models.ScheduleException.date == day,
    ).first()


def get_working_window(db: Session, master_id: int, day: date) -> Optional[Interval]:
    """Рабочее окно мастера на дату или None, если мастер в этот день не работает.

    Исключение на дату важнее недельного графика: выходной убирает окно,
    иначе берутся часы исключения. Без исключения действует активная
    строка графика на день недели (isoweekday).
    """
    exception = get_exception(db, master_id, day)
    if exception is not None:
        if exception.is_day_off or exception.start_time is None or exception.end_time is None:
            return None
        return Interval(datetime.combine(day, exception.start_time), datetime.combine(day, exception.end_time))

    schedule = db.query(models.Schedule).filter(
        models.Schedule.master_id == master_id,
        models.Schedule.day_of_week == day.isoweekday(),
        models.Schedule.is_active.is_(True),
    ).first()
    if not schedule:
        return None
    return Interval(datetime.combine(day, schedule.start_time), datetime.combine(day, schedule.end_time))


def get_blocks(db: Session, master_id: int, start: datetime, end: datetime) -> List[Interval]:
    blocks = db.query(models.BlockInterval).filter(
        models.BlockInterval.master_id == master_id,
        models.BlockInterval.start_time < end,
        models.BlockInterval.end_time > start,
    ).order_by(models.BlockInterval.start_time).all()
    return [Interval(b.start_time, b.end_time) for b in blocks]


def get_busy_intervals(
    db: Session,
    master_id: int,
    start: datetime,
    end: datetime,
    exclude_appointment_id: Optional[int] = None,
) -> List[Interval]:
    """Неотмененные записи мастера, пересекающие [start, end)."""
    query = db.query(models.Appointment).filter(
        models.Appointment.master_id == master_id,
        models.Appointment.status != models.AppointmentStatus.CANCELLED.value,
        models.Appointment.start_time < end,
        models.Appointment.end_time > start,
    )
    if exclude_appointment_id is not None:
        query = query.filter(models.Appointment.id != exclude_appointment_id)
    return [Interval(a.start_time, a.end_time) for a in query.order_by(models.Appointment.start_time).all()]


def add_exception(db: Session, master_id: int, day: date, is_day_off: bool,
                  start_time: Optional[time] = None, end_time: Optional[time] = None) -> models.ScheduleException:
    if not is_day_off:
        if start_time is None or end_time is None:
            raise BookingValidationError("Working hours are required unless the day is off")
        if start_time >= end_time:
            raise BookingValidationError("Start time must be before end time")
    exception = get_exception(db, master_id, day)
    if exception is None:
        exception = models.ScheduleException(master_id=master_id, date=day)
        db.add(exception)
    exception.is_day_off = is_day_off
    exception.start_time = None if is_day_off else start_time
    exception.end_time = None if is_day_off else end_time
    return exception


def add_block(db: Session, master_id: int, start: datetime, end: datetime,
              reason: Optional[str] = None) -> models.BlockInterval:
    if start >= end:
        raise BookingValidationError("Block start must be before its end")
    block = models.BlockInterval(master_id=master_id, start_time=start, end_time=end, reason=reason)
    db.add(block)
    return block


def get_master_or_404(db: Session, master_id: int) -> models.Master:
    master = db.query(models.Master).filter(models.Master.id == master_id).first()
    if not master:
        raise NotFoundError("Master not found")
    return master


def day_bounds(day: date) -> Interval:
    start = datetime.combine(day, time.min)
    return Interval(start, start + timedelta(days=1))
