from datetime import datetime

from fastapi.testclient import TestClient

from condoportal.api.dependencies import get_db
from condoportal.auth.jwt import get_current_user
from condoportal.main import app
from condoportal.models.models import AuditLog, Occurrence
from condoportal.services.occurrences import (
    count_by_status,
    create_occurrence,
    format_occurrence_number,
    next_occurrence_number,
    update_occurrence,
)


def _override_get_db(session):
    def _inner():
        try:
            yield session
        finally:
            pass

    return _inner


def _override_user(user):
    def _inner():
        return user

    return _inner


def _report(session, condominium, user, title="Infiltração"):
    return create_occurrence(
        session,
        condominium.id,
        user.id,
        {"title": title, "description": "Água no tecto da garagem", "category": "manutencao"},
    )


def test_occurrences_are_numbered_per_condominium(db_session, create_condominium, create_user):
    first = create_condominium()
    second = create_condominium()
    reporter = create_user(role="resident", condominium=first)
    other_reporter = create_user(role="resident", condominium=second)

    assert next_occurrence_number(db_session, first.id) == 1
    numbers = [_report(db_session, first, reporter).occurrence_number for _ in range(3)]
    other = _report(db_session, second, other_reporter)

    assert numbers == [1, 2, 3]
    assert other.occurrence_number == 1
    assert next_occurrence_number(db_session, first.id) == 4
    assert format_occurrence_number(7) == "#007"


def test_new_occurrence_defaults(db_session, create_condominium, create_user):
    condominium = create_condominium()
    reporter = create_user(role="resident", condominium=condominium, first_name="Ana", last_name="Silva")

    occurrence = create_occurrence(
        db_session, condominium.id, reporter.id, {"title": "Ruído", "description": "Obras depois das 22h"}
    )

    assert occurrence.status == "aberta"
    assert occurrence.category == "reclamacao"
    assert occurrence.priority == "media"
    assert occurrence.images == []
    assert occurrence.resolved_at is None
    assert occurrence.reporter_name == "Ana Silva"


def test_resolving_requires_notes_and_stamps_time(db_session, create_condominium, create_user):
    condominium = create_condominium()
    reporter = create_user(role="resident", condominium=condominium)
    occurrence = _report(db_session, condominium, reporter)
    resolved_at = datetime(2025, 3, 15, 10, 30)

    rejected = update_occurrence(db_session, occurrence, {"status": "resolvida"})
    assert rejected["success"] is False
    assert rejected["code"] == "RESOLUTION_NOTES_REQUIRED"
    assert occurrence.status == "aberta"

    result = update_occurrence(
        db_session,
        occurrence,
        {"status": "resolvida", "resolution_notes": "Canalização reparada"},
        now=resolved_at,
    )
    assert result["success"] is True
    assert result["before"] == {"status": "aberta", "resolution_notes": None}
    assert occurrence.resolved_at == resolved_at

    update_occurrence(db_session, occurrence, {"status": "em_andamento"})
    assert occurrence.resolved_at is None
    db_session.commit()
    assert count_by_status(db_session, condominium.id) == {"aberta": 0, "em_andamento": 1, "resolvida": 0}


def test_residents_report_and_see_only_their_own_occurrences(
    db_session, create_condominium, create_user, create_resident
):
    condominium = create_condominium()
    coordinator = create_user(role="coordinator", condominium=condominium)
    reporter = create_resident(condominium, apartment="101").profile.user
    neighbour = create_resident(condominium, apartment="102", first_name="Carla").profile.user

    client = TestClient(app)
    app.dependency_overrides[get_db] = _override_get_db(db_session)
    app.dependency_overrides[get_current_user] = _override_user(reporter)
    try:
        resp = client.post(
            "/occurrences/",
            json={
                "title": "Elevador parado",
                "description": "O elevador B não funciona",
                "category": "manutencao",
                "priority": "alta",
                "location": "Bloco B",
            },
        )
        assert resp.status_code == 201
        created = resp.json()
        assert created["occurrence_number"] == 1
        assert created["status"] == "aberta"
        assert created["reported_by_user_id"] == reporter.id
        assert created["reporter_name"] == "Ana Silva"

        resp = client.post("/occurrences/", json={"title": "x", "description": "y", "category": "outra"})
        assert resp.status_code == 422

        assert client.put(f"/occurrences/{created['id']}", json={"status": "em_andamento"}).status_code == 403

        app.dependency_overrides[get_current_user] = _override_user(neighbour)
        client.post("/occurrences/", json={"title": "Lixo", "description": "Contentor cheio"})
        assert [item["occurrence_number"] for item in client.get("/occurrences/").json()] == [2]
        assert client.get(f"/occurrences/{created['id']}").status_code == 404
        assert client.get("/occurrences/summary").json() == {"aberta": 1, "em_andamento": 0, "resolvida": 0}

        app.dependency_overrides[get_current_user] = _override_user(coordinator)
        assert len(client.get("/occurrences/").json()) == 2
        assert len(client.get("/occurrences/", params={"status": "resolvida"}).json()) == 0

        resp = client.put(f"/occurrences/{created['id']}", json={"status": "resolvida"})
        assert resp.status_code == 400
        assert resp.json()["code"] == "RESOLUTION_NOTES_REQUIRED"

        resp = client.put(
            f"/occurrences/{created['id']}",
            json={"status": "resolvida", "resolution_notes": "Técnico substituiu o motor", "assigned_to": "Elevadores Lda"},
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "resolvida"
        assert resp.json()["resolved_at"] is not None
        assert resp.json()["assigned_to"] == "Elevadores Lda"

        app.dependency_overrides[get_current_user] = _override_user(reporter)
        assert client.get(f"/occurrences/{created['id']}").json()["resolution_notes"] == "Técnico substituiu o motor"
    finally:
        app.dependency_overrides.clear()
        client.close()

    assert db_session.query(Occurrence).count() == 2
    assert db_session.query(AuditLog).filter(AuditLog.action == "occurrence.create").count() == 2
    assert db_session.query(AuditLog).filter(AuditLog.action == "occurrence.update").count() == 1
