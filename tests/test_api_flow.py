import logging
from unittest.mock import patch

from api.main import run
from conftest import MONDAY, basic_auth, client_headers

ADMIN = basic_auth("admin", "admin")


def setup_catalog(client):
    response = client.post("/services", json={"name": "Стрижка", "price": 1000, "durationMinutes": 60}, headers=ADMIN)
    assert response.status_code == 201
    service_id = response.json()["id"]

    master_data = {"name": "Мастер Тест", "specialization": "Профи", "serviceIds": [service_id]}
    response = client.post("/masters", json=master_data, headers=ADMIN)
    assert response.status_code == 201
    master_id = response.json()["id"]
    assert response.json()["serviceIds"] == [service_id]

    items = [{"dayOfWeek": 1, "isWorking": True, "startTime": "09:00", "endTime": "18:00"}]
    items += [{"dayOfWeek": d, "isWorking": False, "startTime": "10:00", "endTime": "19:00"} for d in range(2, 8)]
    response = client.put(f"/masters/{master_id}/schedule", json={"items": items}, headers=ADMIN)
    assert response.status_code == 200
    assert response.json()[0]["isWorking"] is True
    return master_id, service_id


def test_full_flow(client):
    master_id, service_id = setup_catalog(client)
    alice = client_headers(1001, "Alice")
    bob = client_headers(1002, "Bob")

    # 1. Слоты
    response = client.get(f"/appointments/slots?masterId={master_id}&serviceId={service_id}&date={MONDAY.isoformat()}")
    assert response.status_code == 200
    slots = response.json()
    assert len(slots) == 17
    assert slots[0] == "2030-01-07T09:00:00+03:00"

    # 2. Запись
    appt_data = {"masterId": master_id, "serviceId": service_id, "startTime": "2030-01-07T10:00:00"}
    response = client.post("/appointments", json=appt_data, headers=alice)
    assert response.status_code == 201
    appt = response.json()
    assert appt["status"] == "pending"
    assert appt["endTime"] == "2030-01-07T11:00:00+03:00"

    # 3. Конфликт
    response = client.post("/appointments", json={**appt_data, "startTime": "2030-01-07T10:30:00+03:00"}, headers=bob)
    assert response.status_code == 409
    assert "booked" in response.json()["detail"]

    # 4. Чужая отмена
    response = client.patch(f"/appointments/{appt['id']}/cancel", json={"reason": "test"}, headers=bob)
    assert response.status_code == 403
    response = client.get(f"/appointments/{appt['id']}", headers=ADMIN)
    assert response.json()["status"] == "pending"

    # 5. Подтверждение: клиенту нельзя, админу можно
    assert client.post(f"/appointments/{appt['id']}/confirm", headers=alice).status_code == 403
    response = client.post(f"/appointments/{appt['id']}/confirm", headers=ADMIN)
    assert response.status_code == 200
    assert response.json()["status"] == "confirmed"

    # 6. Перенос на то же время
    response = client.patch(f"/appointments/{appt['id']}/reschedule",
                            json={"startTime": "2030-01-07T10:00:00"}, headers=alice)
    assert response.status_code == 200
    assert response.json()["status"] == "rescheduled"

    # 7. Отмена и повторная отмена
    response = client.patch(f"/appointments/{appt['id']}/cancel", json={"reason": "заболела"}, headers=alice)
    assert response.status_code == 200
    assert response.json()["cancellationReason"] == "заболела"
    response = client.patch(f"/appointments/{appt['id']}/cancel", headers=ADMIN)
    assert response.status_code == 409

    # 8. История
    response = client.get(f"/appointments/{appt['id']}/history", headers=alice)
    assert [h["action"] for h in response.json()] == ["create", "confirm", "reschedule", "cancel"]

    # 9. Список: клиент видит только свои
    assert client.get("/appointments", headers=bob).json() == []
    assert len(client.get("/appointments?status=cancelled", headers=ADMIN).json()) == 1


def test_notifications_are_sent_in_background(client, sender):
    master_id, service_id = setup_catalog(client)
    response = client.post("/appointments", json={"masterId": master_id, "serviceId": service_id,
                                                  "startTime": "2030-01-07T12:00:00"},
                           headers=client_headers(1001))
    assert response.status_code == 201
    assert [(e.event_type, e.recipient_id) for e in sender.sent] == [("created", 1001)]


def test_error_mapping(client):
    master_id, service_id = setup_catalog(client)
    headers = client_headers(1001)

    response = client.post("/appointments", json={"masterId": 999, "serviceId": service_id,
                                                  "startTime": "2030-01-07T10:00:00"}, headers=headers)
    assert response.status_code == 404

    response = client.post("/appointments", json={"masterId": master_id, "serviceId": service_id,
                                                  "startTime": "2030-01-05T10:00:00"}, headers=headers)
    assert response.status_code == 400

    response = client.post("/appointments", json={"masterId": master_id, "serviceId": service_id,
                                                  "startTime": "2030-01-07T20:00:00"}, headers=headers)
    assert response.status_code == 400

    response = client.patch("/appointments/999/cancel", headers=headers)
    assert response.status_code == 404


def test_authentication(client):
    master_id, service_id = setup_catalog(client)
    body = {"masterId": master_id, "serviceId": service_id, "startTime": "2030-01-07T10:00:00"}

    assert client.post("/appointments", json=body).status_code == 401
    assert client.post("/appointments", json=body, headers={"X-Api-Token": "wrong", "X-Telegram-User-Id": "1"}).status_code == 401
    assert client.post("/appointments", json=body, headers={"X-Api-Token": "test-api-token"}).status_code == 401
    assert client.post("/services", json={"name": "x", "price": 1, "durationMinutes": 10},
                       headers=basic_auth("admin", "wrong")).status_code == 401
    assert client.post("/services", json={"name": "x", "price": 1, "durationMinutes": 10},
                       headers=client_headers(1001)).status_code == 401


def test_exceptions_and_blocks(client):
    master_id, service_id = setup_catalog(client)
    slots_url = f"/appointments/slots?masterId={master_id}&serviceId={service_id}&date={MONDAY.isoformat()}"

    response = client.post(f"/masters/{master_id}/blocks", headers=ADMIN, json={
        "startTime": "2030-01-07T13:00:00", "endTime": "2030-01-07T14:00:00", "reason": "обучение"})
    assert response.status_code == 201
    block_id = response.json()["id"]
    assert "2030-01-07T13:00:00+03:00" not in client.get(slots_url).json()

    assert client.delete(f"/masters/{master_id}/blocks/{block_id}", headers=ADMIN).status_code == 200
    assert "2030-01-07T13:00:00+03:00" in client.get(slots_url).json()

    response = client.post(f"/masters/{master_id}/exceptions", headers=ADMIN,
                           json={"date": MONDAY.isoformat(), "isDayOff": True})
    assert response.status_code == 201
    assert client.get(slots_url).json() == []
    assert len(client.get(f"/masters/{master_id}/exceptions").json()) == 1

    response = client.post(f"/masters/{master_id}/exceptions", headers=ADMIN,
                           json={"date": MONDAY.isoformat(), "isDayOff": False})
    assert response.status_code == 400


def test_schedule_validation(client):
    master_id, _ = setup_catalog(client)
    items = [{"dayOfWeek": 1, "isWorking": True, "startTime": "18:00", "endTime": "09:00"}]
    response = client.put(f"/masters/{master_id}/schedule", json={"items": items}, headers=ADMIN)
    assert response.status_code == 422
    assert client.get("/masters/999/schedule").status_code == 404


def test_health(client):
    assert client.get("/").status_code == 200


def test_reminders_endpoint(client, sender):
    master_id, service_id = setup_catalog(client)
    alice = client_headers(1001, "Alice")
    response = client.post("/appointments", json={"masterId": master_id, "serviceId": service_id,
                                                  "startTime": "2030-01-07T12:00:00"}, headers=alice)
    appt_id = response.json()["id"]
    assert client.post(f"/appointments/{appt_id}/confirm", headers=ADMIN).status_code == 200

    assert client.post("/appointments/send-reminders", headers=alice).status_code == 403
    response = client.post("/appointments/send-reminders", headers=ADMIN)
    assert response.status_code == 200
    assert response.json() == {"sent": 1}
    assert [(e.recipient_id, e.payload["reminder_hours"]) for e in sender.sent if e.event_type == "reminder"] == [(1001, 24)]
    assert client.post("/appointments/send-reminders", headers=ADMIN).json() == {"sent": 0}


def test_rejections_are_logged(client, caplog):
    master_id, service_id = setup_catalog(client)
    response = client.post("/appointments", json={"masterId": master_id, "serviceId": service_id,
                                                  "startTime": "2030-01-07T10:00:00"}, headers=client_headers(1001))
    appt_id = response.json()["id"]

    caplog.set_level(logging.INFO)
    assert client.patch(f"/appointments/{appt_id}/cancel", headers=client_headers(1002)).status_code == 403
    assert client.get("/appointments/999", headers=ADMIN).status_code == 404

    rejected = [(r.levelno, r.getMessage()) for r in caplog.records if "rejected" in r.getMessage()]
    assert (logging.WARNING, f"PATCH /appointments/{appt_id}/cancel rejected: You can only manage your own appointments") in rejected
    assert (logging.INFO, "GET /appointments/999 rejected: Appointment not found") in rejected


def test_run_starts_uvicorn():
    with patch("api.main.uvicorn.run") as uvicorn_run:
        run()
    uvicorn_run.assert_called_once()
    assert uvicorn_run.call_args.args == ("api.main:app",)
    assert set(uvicorn_run.call_args.kwargs) == {"host", "port"}
