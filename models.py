import enum
from datetime import datetime, timezone

from sqlalchemy import (Column, Integer, String, Text, ForeignKey, Table,
                      BigInteger, Time, Date, DateTime, Boolean,
                      CheckConstraint, UniqueConstraint, Index, DDL, event, func, text)
from sqlalchemy.dialects.postgresql import ExcludeConstraint
from sqlalchemy.orm import relationship
from database import Base


class AppointmentStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"


# Статусы, из которых запись уже не выходит
TERMINAL_STATUSES = (AppointmentStatus.COMPLETED.value, AppointmentStatus.CANCELLED.value)

ACTIVE_APPOINTMENT = text("status <> 'cancelled'")


def utcnow():
    # created_at / updated_at хранятся в UTC без tzinfo
    return datetime.now(timezone.utc).replace(tzinfo=None)


master_services = Table('master_services', Base.metadata,
    Column('master_id', Integer, ForeignKey('masters.id'), primary_key=True),
    Column('service_id', Integer, ForeignKey('services.id'), primary_key=True)
)


class Client(Base):
    __tablename__ = "clients"
    id = Column(Integer, primary_key=True, index=True)
    telegram_user_id = Column(BigInteger, nullable=False, unique=True)
    name = Column(String(255))
    phone_number = Column(String(20))

    appointments = relationship("Appointment", back_populates="client")


class Service(Base):
    __tablename__ = "services"
    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="ck_services_duration_positive"),
    )
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), index=True, nullable=False)
    price = Column(Integer, nullable=False, default=0)
    duration_minutes = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    masters = relationship("Master", secondary=master_services, back_populates="services")
    appointments = relationship("Appointment", back_populates="service")


class Master(Base):
    __tablename__ = "masters"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), index=True, nullable=False)
    specialization = Column(String(255))
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    # Перерыв между записями, минуты
    break_minutes = Column(Integer, nullable=False, default=0)
    telegram_chat_id = Column(BigInteger, nullable=True)

    services = relationship("Service", secondary=master_services, back_populates="masters")
    schedules = relationship("Schedule", back_populates="master", cascade="all, delete-orphan")
    appointments = relationship("Appointment", back_populates="master")

    @property
    def service_ids(self):
        return [s.id for s in self.services]


class Schedule(Base):
    """Недельный график мастера: одна строка на день недели (1=Пн ... 7=Вс)."""
    __tablename__ = "schedules"
    __table_args__ = (
        UniqueConstraint("master_id", "day_of_week", name="uq_schedules_master_day"),
        CheckConstraint("start_time < end_time", name="ck_schedules_window"),
        CheckConstraint("day_of_week BETWEEN 1 AND 7", name="ck_schedules_day_of_week"),
    )
    id = Column(Integer, primary_key=True)
    master_id = Column(Integer, ForeignKey('masters.id'), nullable=False)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    master = relationship("Master", back_populates="schedules")


class ScheduleException(Base):
    """Исключение из графика на конкретную дату: выходной или другие часы."""
    __tablename__ = "schedule_exceptions"
    __table_args__ = (
        UniqueConstraint("master_id", "date", name="uq_schedule_exceptions_master_date"),
    )
    id = Column(Integer, primary_key=True)
    master_id = Column(Integer, ForeignKey('masters.id'), nullable=False)
    date = Column(Date, nullable=False)
    is_day_off = Column(Boolean, nullable=False, default=False)
    start_time = Column(Time, nullable=True)
    end_time = Column(Time, nullable=True)


class BlockInterval(Base):
    __tablename__ = "block_intervals"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_block_intervals_window"),
    )
    id = Column(Integer, primary_key=True)
    master_id = Column(Integer, ForeignKey('masters.id'), nullable=False, index=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    reason = Column(Text, nullable=True)


class Appointment(Base):
    __tablename__ = "appointments"
    id = Column(Integer, primary_key=True)
    client_id = Column(Integer, ForeignKey('clients.id'), nullable=False)
    master_id = Column(Integer, ForeignKey('masters.id'), nullable=False)
    service_id = Column(Integer, ForeignKey('services.id'), nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    # Длительность и цена фиксируются в момент записи
    duration_minutes = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=AppointmentStatus.PENDING.value)
    price = Column(Integer, nullable=False, default=0)
    bonus_points_used = Column(Integer, nullable=False, default=0)
    bonus_points_earned = Column(Integer, nullable=False, default=0)
    discount = Column(Integer, nullable=False, default=0)
    notes = Column(Text, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_appointments_window"),
        Index("ix_appointments_master_start", "master_id", "start_time"),
        Index("ix_appointments_client_status", "client_id", "status"),
        # Одинаковое начало у мастера: ловится на любой СУБД
        Index(
            "uq_appointments_master_start_active",
            "master_id", "start_time",
            unique=True,
            sqlite_where=ACTIVE_APPOINTMENT,
            postgresql_where=ACTIVE_APPOINTMENT,
        ),
        # Любое пересечение интервалов: только PostgreSQL (btree_gist)
        ExcludeConstraint(
            (master_id, "="),
            (func.tsrange(start_time, end_time), "&&"),
            where=ACTIVE_APPOINTMENT,
            using="gist",
            name="appointments_no_overlap_per_master",
        ).ddl_if(dialect="postgresql"),
    )

    client = relationship("Client", back_populates="appointments")
    master = relationship("Master", back_populates="appointments")
    service = relationship("Service", back_populates="appointments")
    changes = relationship("AppointmentChange", back_populates="appointment",
                           order_by="AppointmentChange.id")
    reminders = relationship("AppointmentReminder", back_populates="appointment")


class AppointmentChange(Base):
    """Журнал изменений записи (только добавление)."""
    __tablename__ = "appointment_changes"
    id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, ForeignKey('appointments.id'), nullable=False, index=True)
    action = Column(String(20), nullable=False)
    from_status = Column(String(20), nullable=True)
    to_status = Column(String(20), nullable=False)
    old_start_time = Column(DateTime, nullable=True)
    new_start_time = Column(DateTime, nullable=True)
    actor_role = Column(String(20), nullable=False)
    actor_id = Column(Integer, nullable=True)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    appointment = relationship("Appointment", back_populates="changes")


class AppointmentReminder(Base):
    """Отправленное напоминание: одно на запись и интервал."""
    __tablename__ = "appointment_reminders"
    __table_args__ = (
        UniqueConstraint("appointment_id", "interval_hours", name="uq_appointment_reminders_interval"),
    )
    id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, ForeignKey('appointments.id'), nullable=False, index=True)
    interval_hours = Column(Integer, nullable=False)
    sent_at = Column(DateTime, nullable=False, default=utcnow)

    appointment = relationship("Appointment", back_populates="reminders")


event.listen(
    Base.metadata,
    "before_create",
    DDL("CREATE EXTENSION IF NOT EXISTS btree_gist").execute_if(dialect="postgresql"),
)
