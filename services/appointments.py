# services/appointments.py
"""Жизненный цикл записи: создание, отмена, перенос, подтверждение, завершение.

Каждое изменение идет одной транзакцией. Перед проверкой пересечений
блокируется строка мастера (SELECT ... FOR UPDATE в PostgreSQL, BEGIN IMMEDIATE
в SQLite), а изменяемая запись блокируется своим FOR UPDATE. Что проскочит
мимо, отсекут частичный уникальный индекс и exclusion constraint на
`appointments`: такой IntegrityError превращается в ConflictError.
Уведомления отправляются только после коммита.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import and_, exists, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload, selectinload

import models
from config import SLOT_STEP_MINUTES, BOOKING_LEAD_MINUTES, REMINDER_INTERVALS_HOURS, REMINDER_LOOKAHEAD_HOURS
from models import AppointmentStatus
from services.clock import salon_now, to_salon_naive
from services.errors import BookingValidationError, ConflictError, ForbiddenError, NotFoundError
from services.notifications import (EVENT_CANCELLED, EVENT_CONFIRMED, EVENT_CREATED,
                                    EVENT_REMINDER, EVENT_RESCHEDULED, NotificationDispatcher, build_events)
from services.schedule import day_bounds, get_blocks, get_busy_intervals, get_working_window
from services.slots import Interval, compute_free_slots, conflicts

ROLE_ADMIN = "admin"
ROLE_CLIENT = "client"

PENDING = AppointmentStatus.PENDING.value
CONFIRMED = AppointmentStatus.CONFIRMED.value
COMPLETED = AppointmentStatus.COMPLETED.value
CANCELLED = AppointmentStatus.CANCELLED.value
RESCHEDULED = AppointmentStatus.RESCHEDULED.value

# Перенесенная запись считается подтвержденной, только если ее подтверждали до переноса
WAS_CONFIRMED = exists().where(
    models.AppointmentChange.appointment_id == models.Appointment.id,
    models.AppointmentChange.action == "confirm",
)
LIVE_CONFIRMED = or_(
    models.Appointment.status == CONFIRMED,
    and_(models.Appointment.status == RESCHEDULED, WAS_CONFIRMED),
)


@dataclass
class Actor:
    role: str
    client_id: Optional[int] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


class AppointmentManager:
    def __init__(
        self,
        db: Session,
        dispatcher: Optional[NotificationDispatcher] = None,
        now: Callable[[], datetime] = salon_now,
        step_minutes: int = SLOT_STEP_MINUTES,
        lead_minutes: int = BOOKING_LEAD_MINUTES,
        reminder_intervals: Optional[List[int]] = None,
        reminder_lookahead_hours: int = REMINDER_LOOKAHEAD_HOURS,
    ):
        self.db = db
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.now = now
        self.step_minutes = step_minutes
        self.lead_minutes = lead_minutes
        self.reminder_intervals = list(REMINDER_INTERVALS_HOURS if reminder_intervals is None else reminder_intervals)
        self.reminder_lookahead_hours = reminder_lookahead_hours

    # ---------- служебное ----------

    @contextmanager
    def _transaction(self):
        try:
            yield
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logging.warning(f"Storage constraint rejected appointment write: {e.orig}")
            raise ConflictError("Time booked") from e
        except Exception:
            self.db.rollback()
            raise

    def _resolve(self, master_id: int, service_id: int, lock: bool = False):
        query = self.db.query(models.Master).filter(models.Master.id == master_id)
        if lock:
            query = query.with_for_update()
        master = query.first()
        if not master:
            raise NotFoundError("Master not found")
        service = self.db.query(models.Service).filter(models.Service.id == service_id).first()
        if not service:
            raise NotFoundError("Service not found")
        if not master.is_active:
            raise BookingValidationError("Master is not accepting bookings")
        if not service.is_active:
            raise BookingValidationError("Service is not available")
        if not any(s.id == service.id for s in master.services):
            raise BookingValidationError("Master does not provide this service")
        return master, service

    def _lock_master(self, master_id: int) -> models.Master:
        master = self.db.query(models.Master).filter(
            models.Master.id == master_id
        ).with_for_update().populate_existing().first()
        if not master:
            raise NotFoundError("Master not found")
        return master

    def _check_slot(self, master: models.Master, start: datetime, end: datetime,
                    exclude_appointment_id: Optional[int] = None) -> None:
        now = self.now()
        if start <= now or start < now + timedelta(minutes=self.lead_minutes):
            raise BookingValidationError("Cannot book a time in the past")

        window = get_working_window(self.db, master.id, start.date())
        if window is None or start < window.start or end > window.end:
            raise BookingValidationError("Requested time is outside the master's working hours")

        candidate = Interval(start, end)
        if conflicts(candidate, get_blocks(self.db, master.id, start, end)):
            raise BookingValidationError("Requested time is blocked")

        padding = timedelta(minutes=master.break_minutes or 0)
        busy = get_busy_intervals(self.db, master.id, start - padding, end + padding, exclude_appointment_id)
        if conflicts(candidate, busy, padding):
            logging.warning(f"Booking conflict for master {master.id} at {start.isoformat()}")
            raise ConflictError("Time booked")

    def _resolve_client(self, actor: Actor, client_id: Optional[int]) -> models.Client:
        if not actor.is_admin:
            client_id = actor.client_id
        if client_id is None:
            raise BookingValidationError("clientId is required")
        client = self.db.query(models.Client).filter(models.Client.id == client_id).first()
        if not client:
            raise NotFoundError("Client not found")
        return client

    def _load(self, appointment_id: int, lock: bool = False) -> models.Appointment:
        query = self.db.query(models.Appointment).filter(models.Appointment.id == appointment_id)
        if lock:
            query = query.with_for_update().populate_existing()
        appointment = query.first()
        if not appointment:
            raise NotFoundError("Appointment not found")
        return appointment

    @staticmethod
    def _check_owner(actor: Actor, appointment: models.Appointment) -> None:
        if not actor.is_admin and appointment.client_id != actor.client_id:
            raise ForbiddenError("You can only manage your own appointments")

    @staticmethod
    def _require_admin(actor: Actor) -> None:
        if not actor.is_admin:
            raise ForbiddenError("Admin rights required")

    def _log(self, appointment: models.Appointment, action: str, from_status: Optional[str], actor: Actor,
             old_start_time: Optional[datetime] = None, reason: Optional[str] = None) -> None:
        self.db.add(models.AppointmentChange(
            appointment_id=appointment.id,
            action=action,
            from_status=from_status,
            to_status=appointment.status,
            old_start_time=old_start_time,
            new_start_time=appointment.start_time,
            actor_role=actor.role,
            actor_id=actor.client_id,
            reason=reason,
        ))

    def _was_confirmed(self, appointment_id: int) -> bool:
        return self.db.query(models.AppointmentChange).filter(
            models.AppointmentChange.appointment_id == appointment_id,
            models.AppointmentChange.action == "confirm",
        ).first() is not None

    def _notify(self, appointment: models.Appointment, event_type: str, **kwargs) -> None:
        try:
            self.dispatcher.dispatch_all(build_events(appointment, event_type, **kwargs))
        except Exception as e:
            # запись уже сохранена, ошибка уведомления на нее не влияет
            logging.error(f"Failed to build notifications for appointment #{appointment.id}: {e}", exc_info=True)

    # ---------- слоты ----------

    def free_slots(self, master_id: int, service_id: int, day: date) -> List[datetime]:
        master, service = self._resolve(master_id, service_id)
        window = get_working_window(self.db, master.id, day)
        if window is None:
            return []
        padding = timedelta(minutes=master.break_minutes or 0)
        busy = get_busy_intervals(self.db, master.id, window.start - padding, window.end + padding)
        blocked = get_blocks(self.db, master.id, window.start, window.end)
        return compute_free_slots(
            window, busy, service.duration_minutes, self.step_minutes,
            now=self.now() + timedelta(minutes=self.lead_minutes),
            padding_minutes=master.break_minutes or 0,
            blocked=blocked,
        )

    # ---------- жизненный цикл ----------

    def create(self, actor: Actor, master_id: int, service_id: int, start_time: datetime,
               client_id: Optional[int] = None, notes: Optional[str] = None) -> models.Appointment:
        start = to_salon_naive(start_time)
        with self._transaction():
            client = self._resolve_client(actor, client_id)
            master, service = self._resolve(master_id, service_id, lock=True)
            end = start + timedelta(minutes=service.duration_minutes)
            self._check_slot(master, start, end)

            appointment = models.Appointment(
                client_id=client.id,
                master_id=master.id,
                service_id=service.id,
                start_time=start,
                end_time=end,
                duration_minutes=service.duration_minutes,
                price=service.price,
                status=PENDING,
                notes=notes,
            )
            self.db.add(appointment)
            self.db.flush()
            self._log(appointment, "create", None, actor)

        self.db.refresh(appointment)
        logging.info(f"Appointment #{appointment.id} created: master {master_id}, {start.isoformat()}")
        self._notify(appointment, EVENT_CREATED)
        return appointment

    def cancel(self, actor: Actor, appointment_id: int, reason: Optional[str] = None) -> models.Appointment:
        with self._transaction():
            appointment = self._load(appointment_id, lock=True)
            self._check_owner(actor, appointment)
            if appointment.status in models.TERMINAL_STATUSES:
                raise ConflictError(f"Appointment is already {appointment.status}")
            from_status = appointment.status
            appointment.status = CANCELLED
            appointment.cancellation_reason = reason
            self._log(appointment, "cancel", from_status, actor, reason=reason)

        self.db.refresh(appointment)
        logging.info(f"Appointment #{appointment.id} cancelled by {actor.role}")
        self._notify(appointment, EVENT_CANCELLED, reason=reason)
        return appointment

    def reschedule(self, actor: Actor, appointment_id: int, new_start_time: datetime) -> models.Appointment:
        start = to_salon_naive(new_start_time)
        with self._transaction():
            appointment = self._load(appointment_id)
            self._check_owner(actor, appointment)
            master = self._lock_master(appointment.master_id)
            # после блокировки мастера перечитываем запись под FOR UPDATE,
            # иначе параллельная отмена может быть перезаписана переносом
            appointment = self._load(appointment_id, lock=True)
            if appointment.status in models.TERMINAL_STATUSES:
                raise ConflictError(f"Appointment is already {appointment.status}")

            end = start + timedelta(minutes=appointment.duration_minutes)
            self._check_slot(master, start, end, exclude_appointment_id=appointment.id)

            from_status = appointment.status
            old_start = appointment.start_time
            appointment.start_time = start
            appointment.end_time = end
            appointment.status = RESCHEDULED
            self.db.flush()
            self._log(appointment, "reschedule", from_status, actor, old_start_time=old_start)

        self.db.refresh(appointment)
        logging.info(f"Appointment #{appointment.id} rescheduled {old_start.isoformat()} -> {start.isoformat()}")
        self._notify(appointment, EVENT_RESCHEDULED, old_start_time=old_start)
        return appointment

    def confirm(self, actor: Actor, appointment_id: int) -> models.Appointment:
        with self._transaction():
            self._require_admin(actor)
            appointment = self._load(appointment_id, lock=True)
            if appointment.status != PENDING:
                raise ConflictError(f"Only pending appointments can be confirmed, current status: {appointment.status}")
            appointment.status = CONFIRMED
            self._log(appointment, "confirm", PENDING, actor)

        self.db.refresh(appointment)
        logging.info(f"Appointment #{appointment.id} confirmed")
        self._notify(appointment, EVENT_CONFIRMED)
        return appointment

    def complete(self, actor: Actor, appointment_id: int) -> models.Appointment:
        with self._transaction():
            self._require_admin(actor)
            appointment = self._load(appointment_id, lock=True)
            if appointment.status not in (CONFIRMED, RESCHEDULED):
                raise ConflictError(f"Appointment cannot be completed from status {appointment.status}")
            if appointment.status == RESCHEDULED and not self._was_confirmed(appointment.id):
                raise ConflictError("Appointment was never confirmed")
            if appointment.end_time > self.now():
                raise BookingValidationError("Appointment has not finished yet")
            from_status = appointment.status
            appointment.status = COMPLETED
            self._log(appointment, "complete", from_status, actor)

        self.db.refresh(appointment)
        logging.info(f"Appointment #{appointment.id} completed")
        return appointment

    def complete_elapsed(self, actor: Actor) -> int:
        """Отмечает выполненными все подтвержденные записи, время которых прошло.

        Это тот же переход, что и complete(): администратор отмечает запись
        выполненной, только сразу для всех закончившихся записей.
        """
        self._require_admin(actor)
        with self._transaction():
            elapsed = self.db.query(models.Appointment).filter(
                LIVE_CONFIRMED,
                models.Appointment.end_time <= self.now(),
            ).with_for_update().all()
            for appointment in elapsed:
                from_status = appointment.status
                appointment.status = COMPLETED
                self._log(appointment, "complete", from_status, actor)
        if elapsed:
            logging.info(f"Marked {len(elapsed)} elapsed appointments as completed")
        return len(elapsed)

    # ---------- напоминания ----------

    def _due_interval(self, appointment: models.Appointment, now: datetime) -> Optional[int]:
        # Окно интервала: от (interval - 1) до (interval + 0.5) часов до начала
        hours_left = (appointment.start_time - now).total_seconds() / 3600
        sent = {r.interval_hours for r in appointment.reminders}
        for interval in self.reminder_intervals:
            if interval in sent:
                continue
            if interval - 1 <= hours_left <= interval + 0.5:
                return interval
        return None

    def send_reminders(self, actor: Actor) -> int:
        """Рассылает клиентам напоминания о подтвержденных записях.

        Смотрит записи в пределах reminder_lookahead_hours. За один запуск по
        записи уходит не больше одного напоминания, а повторно по тому же
        интервалу напоминание не отправляется: отправленные сохраняются в
        `appointment_reminders` до коммита.
        """
        self._require_admin(actor)
        now = self.now()
        due = []
        with self._transaction():
            upcoming = self.db.query(models.Appointment).options(
                selectinload(models.Appointment.reminders),
            ).filter(
                LIVE_CONFIRMED,
                models.Appointment.start_time > now,
                models.Appointment.start_time <= now + timedelta(hours=self.reminder_lookahead_hours),
            ).order_by(models.Appointment.start_time).with_for_update().all()
            for appointment in upcoming:
                interval = self._due_interval(appointment, now)
                if interval is None:
                    continue
                self.db.add(models.AppointmentReminder(appointment_id=appointment.id, interval_hours=interval))
                due.append((appointment, interval))

        for appointment, interval in due:
            self._notify(appointment, EVENT_REMINDER, reminder_hours=interval)
        if due:
            logging.info(f"Sent {len(due)} appointment reminders")
        return len(due)

    # ---------- чтение ----------

    def get(self, actor: Actor, appointment_id: int) -> models.Appointment:
        appointment = self._load(appointment_id)
        self._check_owner(actor, appointment)
        return appointment

    def list(self, actor: Actor, status: Optional[str] = None, master_id: Optional[int] = None,
             day: Optional[date] = None) -> List[models.Appointment]:
        query = self.db.query(models.Appointment).options(
            joinedload(models.Appointment.service),
            joinedload(models.Appointment.master),
        )
        if not actor.is_admin:
            query = query.filter(models.Appointment.client_id == actor.client_id)
        if status:
            query = query.filter(models.Appointment.status == status)
        if master_id:
            query = query.filter(models.Appointment.master_id == master_id)
        if day:
            bounds = day_bounds(day)
            query = query.filter(models.Appointment.start_time >= bounds.start,
                                 models.Appointment.start_time < bounds.end)
        return query.order_by(models.Appointment.start_time).all()

    def history(self, actor: Actor, appointment_id: int) -> List[models.AppointmentChange]:
        appointment = self.get(actor, appointment_id)
        return self.db.query(models.AppointmentChange).filter(
            models.AppointmentChange.appointment_id == appointment.id
        ).order_by(models.AppointmentChange.id).all()
