import os

# Настройки задаются до импорта config, чтобы не трогать реальную БД и Telegram
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["BOT_TOKEN"] = ""
os.environ["ADMIN_CHAT_ID"] = ""
os.environ["API_TOKEN"] = "test-api-token"
os.environ["ADMIN_USERNAME"] = "admin"
os.environ["ADMIN_PASSWORD"] = "admin"
os.environ["BOOKING_LEAD_MINUTES"] = "0"
os.environ["SLOT_STEP_MINUTES"] = "30"
os.environ["SEED_DEMO_DATA"] = "false"

import base64
from datetime import date, datetime, time
from types import SimpleNamespace

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models
from api.dependencies import get_db, get_dispatcher, get_manager
from api.main import app
from database import Base, enable_sqlite_write_lock
from services.appointments import Actor, AppointmentManager, ROLE_ADMIN, ROLE_CLIENT
from services.notifications import NotificationDispatcher

# 7 января 2030 года - понедельник
MONDAY = date(2030, 1, 7)
NOW = datetime(2030, 1, 6, 12, 0)

# Используем базу в оперативной памяти для тестов (быстро и чисто)
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
enable_sqlite_write_lock(engine)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def at(hour, minute=0, day=MONDAY):
    return datetime.combine(day, time(hour, minute))


def basic_auth(username, password):
    token = base64.b64encode(f"{username}:{password}".encode('utf-8')).decode("ascii")
    return {"Authorization": f"Basic {token}"}


def client_headers(telegram_user_id, name="Test Client"):
    return {"X-Api-Token": "test-api-token", "X-Telegram-User-Id": str(telegram_user_id), "X-User-Name": name}


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


class RecordingSender:
    def __init__(self):
        self.sent = []

    async def send(self, event):
        self.sent.append(event)
        return True


@pytest.fixture(scope="function")
def db_session():
    """Создает чистую БД для каждого теста"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def clock():
    return FakeClock(NOW)


@pytest.fixture
def dispatcher():
    return NotificationDispatcher(sender=RecordingSender())


@pytest.fixture
def manager(db_session, dispatcher, clock):
    return AppointmentManager(db_session, dispatcher, now=clock, step_minutes=30, lead_minutes=0)


@pytest.fixture
def salon(db_session):
    """Мастер с услугой на 60 минут, график Пн 09:00-18:00, два клиента."""
    service = models.Service(name="Стрижка", price=1000, duration_minutes=60)
    other_service = models.Service(name="Маникюр", price=2000, duration_minutes=90)
    master = models.Master(name="Мастер Тест", specialization="Парикмахер", telegram_chat_id=555)
    master.services.append(service)
    db_session.add_all([service, other_service, master])
    db_session.flush()
    db_session.add(models.Schedule(master_id=master.id, day_of_week=1, start_time=time(9, 0), end_time=time(18, 0)))
    alice = models.Client(telegram_user_id=1001, name="Alice")
    bob = models.Client(telegram_user_id=1002, name="Bob")
    db_session.add_all([alice, bob])
    db_session.commit()
    return SimpleNamespace(
        master_id=master.id,
        service_id=service.id,
        other_service_id=other_service.id,
        alice=Actor(role=ROLE_CLIENT, client_id=alice.id),
        bob=Actor(role=ROLE_CLIENT, client_id=bob.id),
        admin=Actor(role=ROLE_ADMIN),
    )


@pytest.fixture(scope="function")
def sender():
    return RecordingSender()


@pytest.fixture(scope="function")
def client(db_session, clock, sender):
    """Создает тестовый клиент API с подмененной БД, часами и отправкой уведомлений"""
    def override_get_db():
        try:
            yield db_session
        finally:
            db_session.close()

    def override_get_manager(db=Depends(get_db), dispatcher=Depends(get_dispatcher)):
        dispatcher.sender = sender
        return AppointmentManager(db, dispatcher, now=clock, step_minutes=30, lead_minutes=0)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_manager] = override_get_manager
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
