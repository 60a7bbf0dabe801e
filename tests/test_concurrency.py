import threading
from datetime import time
from types import SimpleNamespace

import pytest
from sqlalchemy.orm import sessionmaker

import models
from conftest import NOW, FakeClock, RecordingSender, at
from database import Base, make_engine
from services.appointments import Actor, AppointmentManager, ROLE_CLIENT
from services.errors import ConflictError
from services.notifications import NotificationDispatcher


@pytest.fixture
def file_db(tmp_path):
    """Файловая SQLite: у каждого потока свое соединение, как у отдельных воркеров."""
    engine = make_engine(f"sqlite:///{tmp_path / 'race.db'}")
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    with Session() as db:
        service = models.Service(name="Стрижка", price=1000, duration_minutes=60)
        master = models.Master(name="Мастер", specialization="Парикмахер")
        master.services.append(service)
        clients = [models.Client(telegram_user_id=2000 + i, name=f"Client {i}") for i in range(2)]
        db.add_all([service, master] + clients)
        db.flush()
        db.add(models.Schedule(master_id=master.id, day_of_week=1, start_time=time(9, 0), end_time=time(18, 0)))
        db.commit()
        ids = SimpleNamespace(master=master.id, service=service.id, clients=[c.id for c in clients])
    yield Session, ids
    engine.dispose()


def test_concurrent_bookings_of_one_slot(file_db):
    Session, ids = file_db
    barrier = threading.Barrier(2)
    results = []

    def worker(client_id):
        with Session() as db:
            manager = AppointmentManager(db, NotificationDispatcher(sender=RecordingSender()), now=FakeClock(NOW))
            barrier.wait()
            try:
                manager.create(Actor(role=ROLE_CLIENT, client_id=client_id), ids.master, ids.service, at(10))
                results.append("created")
            except ConflictError:
                results.append("conflict")

    threads = [threading.Thread(target=worker, args=(cid,)) for cid in ids.clients]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert sorted(results) == ["conflict", "created"]
    with Session() as db:
        assert db.query(models.Appointment).filter(models.Appointment.status != "cancelled").count() == 1


def test_storage_constraint_catches_a_missed_overlap(manager, salon, db_session, monkeypatch):
    # пре-проверка "не видит" конкурента, срабатывает уникальный индекс
    monkeypatch.setattr("services.appointments.get_busy_intervals", lambda *args, **kwargs: [])
    manager.create(salon.alice, salon.master_id, salon.service_id, at(10))
    with pytest.raises(ConflictError):
        manager.create(salon.bob, salon.master_id, salon.service_id, at(10))
    assert db_session.query(models.Appointment).count() == 1


def test_cancelled_rows_do_not_hold_the_unique_slot(manager, salon, db_session, monkeypatch):
    first = manager.create(salon.alice, salon.master_id, salon.service_id, at(10))
    manager.cancel(salon.alice, first.id)
    monkeypatch.setattr("services.appointments.get_busy_intervals", lambda *args, **kwargs: [])
    second = manager.create(salon.bob, salon.master_id, salon.service_id, at(10))
    assert second.id != first.id
    assert db_session.query(models.Appointment).count() == 2
