# api/routers/appointments.py
import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

import schemas
from api.dependencies import get_actor, get_manager
from services.appointments import Actor, AppointmentManager
from services.clock import localize

router = APIRouter(
    prefix="/appointments",
    tags=["Appointments"],
)


# /slots объявлен раньше /{appointment_id}
@router.get("/slots", response_model=List[str])
def get_available_slots(
    master_id: int = Query(alias="masterId"),
    service_id: int = Query(alias="serviceId"),
    selected_date: date = Query(alias="date"),
    manager: AppointmentManager = Depends(get_manager),
):
    slots = manager.free_slots(master_id, service_id, selected_date)
    return [localize(s).isoformat() for s in slots]


@router.post("", response_model=schemas.AppointmentSchema, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: schemas.AppointmentCreate,
    actor: Actor = Depends(get_actor),
    manager: AppointmentManager = Depends(get_manager),
):
    logging.info(f"Received appointment request from {actor.role}: {data.model_dump()}")
    return manager.create(actor, data.master_id, data.service_id, data.start_time,
                          client_id=data.client_id, notes=data.notes)


@router.post("/complete-elapsed", response_model=schemas.CompletedCountSchema)
def complete_elapsed(
    actor: Actor = Depends(get_actor),
    manager: AppointmentManager = Depends(get_manager),
):
    return {"completed": manager.complete_elapsed(actor)}


@router.post("/send-reminders", response_model=schemas.RemindersSentSchema)
def send_reminders(
    actor: Actor = Depends(get_actor),
    manager: AppointmentManager = Depends(get_manager),
):
    return {"sent": manager.send_reminders(actor)}


@router.get("", response_model=List[schemas.AppointmentSchema])
def list_appointments(
    status_filter: Optional[str] = Query(None, alias="status"),
    master_id: Optional[int] = Query(None, alias="masterId"),
    selected_date: Optional[date] = Query(None, alias="date"),
    actor: Actor = Depends(get_actor),
    manager: AppointmentManager = Depends(get_manager),
):
    return manager.list(actor, status=status_filter, master_id=master_id, day=selected_date)


@router.get("/{appointment_id}", response_model=schemas.AppointmentSchema)
def get_appointment(appointment_id: int, actor: Actor = Depends(get_actor),
                    manager: AppointmentManager = Depends(get_manager)):
    return manager.get(actor, appointment_id)


@router.get("/{appointment_id}/history", response_model=List[schemas.AppointmentChangeSchema])
def get_appointment_history(appointment_id: int, actor: Actor = Depends(get_actor),
                            manager: AppointmentManager = Depends(get_manager)):
    return manager.history(actor, appointment_id)


@router.patch("/{appointment_id}/cancel", response_model=schemas.AppointmentSchema)
def cancel_appointment(
    appointment_id: int,
    data: Optional[schemas.CancelRequest] = None,
    actor: Actor = Depends(get_actor),
    manager: AppointmentManager = Depends(get_manager),
):
    reason = data.reason if data else None
    logging.info(f"Cancel request for appointment #{appointment_id} from {actor.role}")
    return manager.cancel(actor, appointment_id, reason)


@router.patch("/{appointment_id}/reschedule", response_model=schemas.AppointmentSchema)
def reschedule_appointment(
    appointment_id: int,
    data: schemas.RescheduleRequest,
    actor: Actor = Depends(get_actor),
    manager: AppointmentManager = Depends(get_manager),
):
    logging.info(f"Reschedule request for appointment #{appointment_id} to {data.start_time.isoformat()}")
    return manager.reschedule(actor, appointment_id, data.start_time)


@router.post("/{appointment_id}/confirm", response_model=schemas.AppointmentSchema)
def confirm_appointment(
    appointment_id: int,
    actor: Actor = Depends(get_actor),
    manager: AppointmentManager = Depends(get_manager),
):
    return manager.confirm(actor, appointment_id)


@router.post("/{appointment_id}/complete", response_model=schemas.AppointmentSchema)
def complete_appointment(
    appointment_id: int,
    actor: Actor = Depends(get_actor),
    manager: AppointmentManager = Depends(get_manager),
):
    return manager.complete(actor, appointment_id)
