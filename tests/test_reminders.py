from datetime import timedelta

from config import local_now


def _create(client, headers, title="Taller de Convivencia", **extra):
    r = client.post("/api/reminders", json={"title": title, "description": "Preparar materiales", **extra}, headers=headers)
    assert r.status_code == 200, r.text
    return r.json()["id"]


def test_create_and_list_newest_first(client, auth_headers):
    first = _create(client, auth_headers, "Primero")
    second = _create(client, auth_headers, "Segundo", type="warning")

    reminders = client.get("/api/reminders", headers=auth_headers).json()
    assert [r["id"] for r in reminders] == [second, first]
    assert reminders[0]["type"] == "warning"
    assert reminders[1]["type"] == "info"
    assert reminders[1]["is_completed"] is False


def test_completion_is_visible_on_immediate_refetch(client, auth_headers):
    reminder_id = _create(client, auth_headers)

    r = client.patch(f"/api/reminders/{reminder_id}/complete", json={"is_completed": True}, headers=auth_headers)
    assert r.status_code == 200

    reminders = client.get("/api/reminders", headers=auth_headers).json()
    assert reminders[0]["id"] == reminder_id
    assert reminders[0]["is_completed"] is True

    open_only = client.get("/api/reminders", params={"include_completed": "false"}, headers=auth_headers).json()
    assert open_only == []


def test_completion_toggles_without_body(client, auth_headers):
    reminder_id = _create(client, auth_headers)
    assert client.patch(f"/api/reminders/{reminder_id}/complete", headers=auth_headers).json()["is_completed"] is True
    assert client.patch(f"/api/reminders/{reminder_id}/complete", headers=auth_headers).json()["is_completed"] is False


def test_edit_and_delete(client, auth_headers):
    reminder_id = _create(client, auth_headers)

    r = client.put(f"/api/reminders/{reminder_id}", json={"title": "Taller reprogramado", "type": "success"}, headers=auth_headers)
    assert r.status_code == 200
    assert r.json()["title"] == "Taller reprogramado"
    assert r.json()["type"] == "success"
    assert r.json()["description"] == "Preparar materiales"

    assert client.delete(f"/api/reminders/{reminder_id}", headers=auth_headers).status_code == 200
    assert client.get("/api/reminders", headers=auth_headers).json() == []
    assert client.delete(f"/api/reminders/{reminder_id}", headers=auth_headers).status_code == 404


def test_invalid_category_is_rejected(client, auth_headers):
    r = client.post("/api/reminders", json={"title": "x", "type": "urgent"}, headers=auth_headers)
    assert r.status_code == 422


def test_reminders_belong_to_their_owner(client, auth_headers, other_psychologist, headers_for):
    reminder_id = _create(client, auth_headers)
    other = headers_for(other_psychologist)

    assert client.get("/api/reminders", headers=other).json() == []
    assert client.patch(f"/api/reminders/{reminder_id}/complete", headers=other).status_code == 404
    assert client.delete(f"/api/reminders/{reminder_id}", headers=other).status_code == 404


def test_dashboard_bundles_counters_appointments_and_open_reminders(client, auth_headers):
    today = local_now().date()
    tomorrow = today + timedelta(days=1)

    for i in range(4):
        _create(client, auth_headers, f"Recordatorio {i}")
    done = _create(client, auth_headers, "Hecho")
    client.patch(f"/api/reminders/{done}/complete", json={"is_completed": True}, headers=auth_headers)

    for day, time in [(today, "08:00"), (today, "10:30"), (tomorrow, "09:00")]:
        client.post("/api/appointments", json={
            "student_name": f"Alumno {time}", "date": day.isoformat(), "time": time,
        }, headers=auth_headers)
    client.post("/api/attentions", json={"student_name": "Ana", "date": today.isoformat()}, headers=auth_headers)

    r = client.get("/api/dashboard", headers=auth_headers)
    assert r.status_code == 200
    body = r.json()
    assert body["stats"] == {"totalAttentions": 1, "todayAppointments": 2}
    assert len(body["upcoming_appointments"]) == 3
    assert [a["time"] for a in body["today_appointments"]] == ["08:00", "10:30"]
    assert len(body["reminders"]) == 3
    assert all(not r["is_completed"] for r in body["reminders"])

    stats = client.get("/api/stats", headers=auth_headers).json()
    assert stats == {"totalAttentions": 1, "todayAppointments": 2}


def test_open_reminders_are_listed_before_completed_ones(client, auth_headers):
    old_open = _create(client, auth_headers, "Pendiente antiguo")
    new_done = _create(client, auth_headers, "Hecho reciente")
    client.patch(f"/api/reminders/{new_done}/complete", json={"is_completed": True}, headers=auth_headers)

    reminders = client.get("/api/reminders", headers=auth_headers).json()
    assert [r["id"] for r in reminders] == [old_open, new_done]
