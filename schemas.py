from datetime import date, datetime, time, timezone
from typing import Annotated, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, model_validator
from pydantic.alias_generators import to_camel

from services.clock import localize

# Время записей хранится как местное время салона, наружу отдаем со смещением
SalonDateTime = Annotated[datetime, PlainSerializer(lambda v: localize(v).isoformat(), return_type=str)]
# created_at / updated_at пишутся в UTC
UtcDateTime = Annotated[datetime, PlainSerializer(lambda v: v.replace(tzinfo=timezone.utc).isoformat(), return_type=str)]


# --- Базовая конфигурация: camelCase снаружи, snake_case тоже принимается ---
class BaseConfig(BaseModel):
    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)


# Услуги
class ServiceSchema(BaseConfig):
    id: int
    name: str
    price: int
    duration_minutes: int
    is_active: bool


class ServiceCreateSchema(BaseConfig):
    name: str
    price: int = Field(ge=0)
    duration_minutes: int = Field(gt=0)
    is_active: bool = True


# Мастера
class MasterSchema(BaseConfig):
    id: int
    name: str
    specialization: Optional[str] = None
    description: Optional[str] = None
    is_active: bool
    break_minutes: int
    service_ids: List[int] = []


class MasterCreateSchema(BaseConfig):
    name: str
    specialization: Optional[str] = None
    description: Optional[str] = None
    is_active: bool = True
    break_minutes: int = Field(default=0, ge=0)
    telegram_chat_id: Optional[int] = None
    service_ids: List[int] = []


# График работы
class ScheduleItem(BaseConfig):
    day_of_week: int = Field(ge=1, le=7)
    is_working: bool
    start_time: time
    end_time: time

    @model_validator(mode="after")
    def check_window(self):
        if self.is_working and self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self


class MasterScheduleUpdate(BaseConfig):
    items: List[ScheduleItem]


class ScheduleExceptionCreate(BaseConfig):
    date: date
    is_day_off: bool = True
    start_time: Optional[time] = None
    end_time: Optional[time] = None


class ScheduleExceptionSchema(BaseConfig):
    id: int
    master_id: int
    date: date
    is_day_off: bool
    start_time: Optional[time] = None
    end_time: Optional[time] = None


class BlockCreate(BaseConfig):
    start_time: datetime
    end_time: datetime
    reason: Optional[str] = None


class BlockSchema(BaseConfig):
    id: int
    master_id: int
    start_time: SalonDateTime
    end_time: SalonDateTime
    reason: Optional[str] = None


# Записи (Appointments)
class AppointmentCreate(BaseConfig):
    master_id: int
    service_id: int
    start_time: datetime
    # Только для администратора: клиент, за которого создается запись
    client_id: Optional[int] = None
    notes: Optional[str] = None


class CancelRequest(BaseConfig):
    reason: Optional[str] = None


class RescheduleRequest(BaseConfig):
    start_time: datetime


class AppointmentSchema(BaseConfig):
    id: int
    client_id: int
    master_id: int
    service_id: int
    start_time: SalonDateTime
    end_time: SalonDateTime
    duration_minutes: int
    status: str
    price: int
    bonus_points_used: int
    bonus_points_earned: int
    discount: int
    notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    created_at: UtcDateTime
    updated_at: UtcDateTime


class AppointmentChangeSchema(BaseConfig):
    id: int
    appointment_id: int
    action: str
    from_status: Optional[str] = None
    to_status: str
    old_start_time: Optional[SalonDateTime] = None
    new_start_time: Optional[SalonDateTime] = None
    actor_role: str
    actor_id: Optional[int] = None
    reason: Optional[str] = None
    created_at: UtcDateTime


class CompletedCountSchema(BaseConfig):
    completed: int


class RemindersSentSchema(BaseConfig):
    sent: int
