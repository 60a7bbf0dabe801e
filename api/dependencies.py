# api/dependencies.py
import logging
import secrets
from typing import Optional

from fastapi import BackgroundTasks, Depends, Header, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import models
from config import ADMIN_USERNAME, ADMIN_PASSWORD, API_TOKEN
from database import SessionLocal
from services.appointments import Actor, AppointmentManager, ROLE_ADMIN, ROLE_CLIENT
from services.notifications import NotificationDispatcher


# --- Dependency БД ---
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# --- Безопасность ---
security = HTTPBasic()
optional_security = HTTPBasic(auto_error=False)


def _is_admin(credentials: Optional[HTTPBasicCredentials]) -> bool:
    if credentials is None:
        return False
    is_username_correct = secrets.compare_digest(credentials.username.encode(), ADMIN_USERNAME.encode())
    is_password_correct = secrets.compare_digest(credentials.password.encode(), ADMIN_PASSWORD.encode())
    return is_username_correct and is_password_correct


def authenticate_admin(credentials: HTTPBasicCredentials = Depends(security)):
    if not _is_admin(credentials):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Basic"},
        )
    return Actor(role=ROLE_ADMIN)


def get_or_create_client(db: Session, telegram_user_id: int, name: Optional[str]) -> models.Client:
    client = db.query(models.Client).filter(models.Client.telegram_user_id == telegram_user_id).first()
    if client:
        return client
    client = models.Client(telegram_user_id=telegram_user_id, name=name)
    db.add(client)
    try:
        db.commit()
    except IntegrityError:
        # параллельный запрос успел создать клиента первым
        db.rollback()
        return db.query(models.Client).filter(models.Client.telegram_user_id == telegram_user_id).one()
    db.refresh(client)
    logging.info(f"New client registered: telegram id {telegram_user_id}")
    return client


def get_actor(
    credentials: Optional[HTTPBasicCredentials] = Depends(optional_security),
    x_api_token: Optional[str] = Header(None),
    x_telegram_user_id: Optional[int] = Header(None),
    x_user_name: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> Actor:
    """Администратор по Basic Auth либо клиент бота/WebApp по токену и Telegram id."""
    if _is_admin(credentials):
        return Actor(role=ROLE_ADMIN)
    if x_api_token and secrets.compare_digest(x_api_token.encode(), API_TOKEN.encode()):
        if x_telegram_user_id is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-Telegram-User-Id")
        client = get_or_create_client(db, x_telegram_user_id, x_user_name)
        return Actor(role=ROLE_CLIENT, client_id=client.id)
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated",
        headers={"WWW-Authenticate": "Basic"},
    )


def get_dispatcher(background_tasks: BackgroundTasks) -> NotificationDispatcher:
    return NotificationDispatcher(background_tasks=background_tasks)


def get_manager(
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> AppointmentManager:
    return AppointmentManager(db, dispatcher)
