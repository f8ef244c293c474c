from urllib.parse import unquote

from crud import CRUDService
from pdf_export import AttentionSnapshot, generate_attention_pdf


def _record(client, headers, **overrides):
    payload = {
        "student_name": "Juan Pérez García",
        "grade": "5to Primaria A",
        "date": "2026-02-15",
        "time": "09:30",
        "reason": "Dificultades de concentración.",
        "observations": "Ansiedad ante exámenes.",
        "recommendations": "Técnicas de respiración.",
    }
    payload.update(overrides)
    r = client.post("/api/attentions", json=payload, headers=headers)
    assert r.status_code == 200, r.text
    return r.json()["id"]


def test_history_is_most_recent_first_with_psychologist_name(client, auth_headers):
    _record(client, auth_headers, student_name="A", date="2026-02-15", time="09:30")
    _record(client, auth_headers, student_name="B", date="2026-02-18", time="11:00")
    _record(client, auth_headers, student_name="C", date="2026-02-18", time="08:00")

    history = client.get("/api/attentions", headers=auth_headers).json()
    assert [a["student_name"] for a in history] == ["B", "C", "A"]
    assert {a["psychologist_name"] for a in history} == {"Laura Vargas"}


def test_history_filters_by_name_and_date(client, auth_headers):
    _record(client, auth_headers, student_name="María Rodríguez", date="2026-02-18")
    _record(client, auth_headers, student_name="Carlos Mendoza", date="2026-02-19")

    r = client.get("/api/attentions", params={"search": "MENDOZA"}, headers=auth_headers)
    assert [a["student_name"] for a in r.json()] == ["Carlos Mendoza"]

    r = client.get("/api/attentions", params={"date": "2026-02-18"}, headers=auth_headers)
    assert [a["student_name"] for a in r.json()] == ["María Rodríguez"]

    r = client.get("/api/attentions", params={"search": "%"}, headers=auth_headers)
    assert r.json() == []


def test_history_name_filter_folds_accented_capitals(client, auth_headers):
    _record(client, auth_headers, student_name="Álvaro Ruiz")
    _record(client, auth_headers, student_name="Óscar Díaz")

    r = client.get("/api/attentions", params={"search": "álvaro"}, headers=auth_headers)
    assert [a["student_name"] for a in r.json()] == ["Álvaro Ruiz"]

    r = client.get("/api/attentions", params={"search": "ÓSCAR"}, headers=auth_headers)
    assert [a["student_name"] for a in r.json()] == ["Óscar Díaz"]


def test_psychologist_sees_only_own_history_supervisor_sees_all(
    client, auth_headers, other_psychologist, supervisor, headers_for
):
    _record(client, auth_headers, student_name="Mine")
    _record(client, headers_for(other_psychologist), student_name="Theirs")

    mine = client.get("/api/attentions", headers=auth_headers).json()
    assert [a["student_name"] for a in mine] == ["Mine"]

    everything = client.get("/api/attentions", headers=headers_for(supervisor)).json()
    assert sorted(a["student_name"] for a in everything) == ["Mine", "Theirs"]


def test_delete_removes_from_history(client, auth_headers):
    attention_id = _record(client, auth_headers)
    assert client.delete(f"/api/attentions/{attention_id}", headers=auth_headers).status_code == 200
    assert client.get("/api/attentions", headers=auth_headers).json() == []
    assert client.get(f"/api/attentions/{attention_id}", headers=auth_headers).status_code == 404


def test_other_psychologist_cannot_delete(client, auth_headers, other_psychologist, headers_for):
    attention_id = _record(client, auth_headers)
    r = client.delete(f"/api/attentions/{attention_id}", headers=headers_for(other_psychologist))
    assert r.status_code == 404
    assert len(client.get("/api/attentions", headers=auth_headers).json()) == 1


def test_create_requires_student_name_and_iso_date(client, auth_headers):
    assert client.post("/api/attentions", json={"student_name": "", "date": "2026-02-15"}, headers=auth_headers).status_code == 422
    assert client.post("/api/attentions", json={"student_name": "Ana", "date": "15/02/2026"}, headers=auth_headers).status_code == 422


def test_pdf_download(client, auth_headers):
    attention_id = _record(client, auth_headers)
    r = client.get(f"/api/attentions/{attention_id}/pdf", headers=auth_headers)
    assert r.status_code == 200
    assert r.headers["content-type"] == "application/pdf"
    assert r.content.startswith(b"%PDF")
    disposition = r.headers["content-disposition"]
    assert disposition.startswith("attachment;")
    assert "Atencion_Juan_Perez_Garcia_2026-02-15.pdf" in disposition
    assert "Atencion_Juan_Pérez_García_2026-02-15.pdf" in unquote(disposition)


def test_pdf_with_corrupt_stored_date_is_unprocessable(client, db, auth_headers):
    attention_id = _record(client, auth_headers)
    attention = CRUDService(db).get_attention(attention_id)
    attention.date = "not-a-date"
    db.commit()

    r = client.get(f"/api/attentions/{attention_id}/pdf", headers=auth_headers)
    assert r.status_code == 422
    assert r.json()["code"] == "PDF_EXPORT_FAILED"


def test_export_from_snapshot_survives_deletion(client, db, auth_headers):
    attention_id = _record(client, auth_headers)
    snapshot = AttentionSnapshot.from_record(CRUDService(db).get_attention(attention_id))

    client.delete(f"/api/attentions/{attention_id}", headers=auth_headers)
    assert client.get("/api/attentions", headers=auth_headers).json() == []

    document = generate_attention_pdf(snapshot)
    assert document.page_count >= 1
    assert document.filename == "Atencion_Juan_Pérez_García_2026-02-15.pdf"
    assert snapshot.psychologist_name == "Laura Vargas"
