# api/routers/catalog.py
import logging
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

import models
import schemas
from api.dependencies import authenticate_admin, get_db

router = APIRouter(
    prefix="/services",
    tags=["Catalog"],
)


@router.get("", response_model=List[schemas.ServiceSchema])
def get_services(include_inactive: bool = False, db: Session = Depends(get_db)):
    query = db.query(models.Service)
    if not include_inactive:
        query = query.filter(models.Service.is_active.is_(True))
    return query.order_by(models.Service.name).all()


@router.post("", response_model=schemas.ServiceSchema, status_code=status.HTTP_201_CREATED)
def create_service(service: schemas.ServiceCreateSchema, db: Session = Depends(get_db),
                   admin=Depends(authenticate_admin)):
    new_service = models.Service(**service.model_dump())
    db.add(new_service)
    db.commit()
    db.refresh(new_service)
    logging.info(f"Service created: {new_service.name} ({new_service.duration_minutes} min)")
    return new_service
