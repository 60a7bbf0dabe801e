# api/routers/masters.py
import logging
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

import models
import schemas
from api.dependencies import authenticate_admin, get_db
from services import schedule as schedule_store
from services.clock import to_salon_naive
from services.errors import NotFoundError

router = APIRouter(
    prefix="/masters",
    tags=["Masters"],
)


@router.get("", response_model=List[schemas.MasterSchema])
def get_masters(include_inactive: bool = False, db: Session = Depends(get_db)):
    query = db.query(models.Master)
    if not include_inactive:
        query = query.filter(models.Master.is_active.is_(True))
    return query.order_by(models.Master.name).all()


@router.post("", response_model=schemas.MasterSchema, status_code=status.HTTP_201_CREATED)
def create_master(master_data: schemas.MasterCreateSchema, db: Session = Depends(get_db),
                  admin=Depends(authenticate_admin)):
    services = []
    if master_data.service_ids:
        services = db.query(models.Service).filter(models.Service.id.in_(master_data.service_ids)).all()
        if len(services) != len(set(master_data.service_ids)):
            raise NotFoundError("Service not found")
    new_master = models.Master(**master_data.model_dump(exclude={"service_ids"}))
    new_master.services = services
    db.add(new_master)
    db.commit()
    db.refresh(new_master)
    logging.info(f"Master created: {new_master.name}")
    return new_master


# --- График ---

@router.get("/{master_id}/schedule", response_model=List[schemas.ScheduleItem])
def get_master_schedule(master_id: int, db: Session = Depends(get_db)):
    schedule_store.get_master_or_404(db, master_id)
    return schedule_store.get_week_schedule(db, master_id)


@router.put("/{master_id}/schedule", response_model=List[schemas.ScheduleItem])
def update_master_schedule(master_id: int, data: schemas.MasterScheduleUpdate, db: Session = Depends(get_db),
                           admin=Depends(authenticate_admin)):
    schedule_store.get_master_or_404(db, master_id)
    schedule_store.replace_week_schedule(db, master_id, data.items)
    db.commit()
    logging.info(f"Schedule updated for master {master_id}")
    return schedule_store.get_week_schedule(db, master_id)


# --- Исключения из графика ---

@router.get("/{master_id}/exceptions", response_model=List[schemas.ScheduleExceptionSchema])
def get_schedule_exceptions(master_id: int, db: Session = Depends(get_db)):
    schedule_store.get_master_or_404(db, master_id)
    return db.query(models.ScheduleException).filter(
        models.ScheduleException.master_id == master_id
    ).order_by(models.ScheduleException.date).all()


@router.post("/{master_id}/exceptions", response_model=schemas.ScheduleExceptionSchema,
             status_code=status.HTTP_201_CREATED)
def create_schedule_exception(master_id: int, data: schemas.ScheduleExceptionCreate,
                              db: Session = Depends(get_db), admin=Depends(authenticate_admin)):
    schedule_store.get_master_or_404(db, master_id)
    exception = schedule_store.add_exception(db, master_id, data.date, data.is_day_off,
                                             data.start_time, data.end_time)
    db.commit()
    db.refresh(exception)
    return exception


@router.delete("/{master_id}/exceptions/{exception_id}")
def delete_schedule_exception(master_id: int, exception_id: int, db: Session = Depends(get_db),
                              admin=Depends(authenticate_admin)):
    exception = db.query(models.ScheduleException).filter(
        models.ScheduleException.id == exception_id,
        models.ScheduleException.master_id == master_id,
    ).first()
    if not exception:
        raise NotFoundError("Schedule exception not found")
    db.delete(exception)
    db.commit()
    return {"message": "Deleted"}


# --- Блокировки времени ---

@router.get("/{master_id}/blocks", response_model=List[schemas.BlockSchema])
def get_blocks(master_id: int, db: Session = Depends(get_db)):
    schedule_store.get_master_or_404(db, master_id)
    return db.query(models.BlockInterval).filter(
        models.BlockInterval.master_id == master_id
    ).order_by(models.BlockInterval.start_time).all()


@router.post("/{master_id}/blocks", response_model=schemas.BlockSchema, status_code=status.HTTP_201_CREATED)
def create_block(master_id: int, data: schemas.BlockCreate, db: Session = Depends(get_db),
                 admin=Depends(authenticate_admin)):
    schedule_store.get_master_or_404(db, master_id)
    block = schedule_store.add_block(db, master_id, to_salon_naive(data.start_time),
                                     to_salon_naive(data.end_time), data.reason)
    db.commit()
    db.refresh(block)
    return block


@router.delete("/{master_id}/blocks/{block_id}")
def delete_block(master_id: int, block_id: int, db: Session = Depends(get_db),
                 admin=Depends(authenticate_admin)):
    block = db.query(models.BlockInterval).filter(
        models.BlockInterval.id == block_id,
        models.BlockInterval.master_id == master_id,
    ).first()
    if not block:
        raise NotFoundError("Block not found")
    db.delete(block)
    db.commit()
    return {"message": "Deleted"}
