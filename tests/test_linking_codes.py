import pytest
from fastapi.testclient import TestClient

from condoportal.api.dependencies import get_db
from condoportal.auth.jwt import get_current_user
from condoportal.main import app
from condoportal.models.models import AuditLog, Condominium
from condoportal.services.linking_codes import (
    generate_linking_code,
    is_valid_linking_code_format,
    normalize_linking_code,
    regenerate_linking_code,
    unique_linking_code,
    validate_linking_code_and_apartment,
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


def _sequence(*codes):
    values = iter(codes)
    return lambda: next(values)


def test_generated_codes_use_the_expected_alphabet():
    for _ in range(50):
        code = generate_linking_code()
        assert is_valid_linking_code_format(code)
    assert normalize_linking_code("  ab12cd34 ") == "AB12CD34"
    assert not is_valid_linking_code_format("AB12-D34")
    assert not is_valid_linking_code_format("AB12CD3")


def test_unique_code_skips_codes_in_use(db_session, create_condominium):
    create_condominium(linking_code="TAKEN001")

    assert unique_linking_code(db_session, generator=_sequence("TAKEN001", "FRESH001")) == "FRESH001"


def test_successive_regenerations_chain_old_and_new_codes(db_session, create_condominium, create_user):
    condominium = create_condominium(linking_code="CODE0001")
    coordinator = create_user(role="coordinator", condominium=condominium)

    first = regenerate_linking_code(
        db_session, condominium.id, actor_user_id=coordinator.id, generator=_sequence("AAAA1111")
    )
    second = regenerate_linking_code(
        db_session, condominium.id, actor_user_id=coordinator.id, generator=_sequence("BBBB2222")
    )

    assert first == {"success": True, "old_code": "CODE0001", "new_code": "AAAA1111", "attempts": 1}
    assert second["old_code"] == first["new_code"]
    assert second["new_code"] != first["new_code"]
    assert db_session.get(Condominium, condominium.id).resident_linking_code == "BBBB2222"
    logs = db_session.query(AuditLog).filter(AuditLog.action == "condominium.linking_code.regenerate").all()
    assert len(logs) == 2
    assert all(log.actor_user_id == coordinator.id for log in logs)


def test_regeneration_retries_past_collisions(db_session, create_condominium):
    condominium = create_condominium(linking_code="CODE0001")
    create_condominium(linking_code="TAKEN001")

    result = regenerate_linking_code(
        db_session, condominium.id, generator=_sequence("CODE0001", "TAKEN001", "NEWCODE1")
    )

    assert result["new_code"] == "NEWCODE1"
    assert result["attempts"] == 3


def test_regeneration_gives_up_after_max_attempts(db_session, create_condominium):
    condominium = create_condominium(linking_code="CODE0001")

    result = regenerate_linking_code(db_session, condominium.id, generator=lambda: "CODE0001", max_attempts=3)

    assert result["success"] is False
    assert result["code"] == "GENERATION_FAILED"
    assert db_session.get(Condominium, condominium.id).resident_linking_code == "CODE0001"
    assert regenerate_linking_code(db_session, 999)["code"] == "NOT_FOUND"


@pytest.mark.parametrize(
    "code, apartment, expected",
    [
        ("", "101", "MISSING_FIELDS"),
        ("CODE0001", "  ", "MISSING_FIELDS"),
        ("abc", "101", "INVALID_FORMAT"),
        ("ZZZZ9999", "101", "CODE_NOT_FOUND"),
        ("code0001", "101", "APARTMENT_TAKEN"),
    ],
)
def test_validation_rejections(db_session, create_condominium, create_resident, code, apartment, expected):
    condominium = create_condominium(linking_code="CODE0001")
    create_resident(condominium, apartment="101")

    result = validate_linking_code_and_apartment(db_session, code, apartment)

    assert result["success"] is False
    assert result["code"] == expected


def test_validation_accepts_free_apartment(db_session, create_condominium, create_resident):
    condominium = create_condominium(name="Edifício Sol", linking_code="CODE0001")
    create_resident(condominium, apartment="101")

    result = validate_linking_code_and_apartment(db_session, " code0001 ", "2B")

    assert result["success"] is True
    assert result["condominium_id"] == condominium.id
    assert result["condominium_name"].startswith("Edifício Sol")


def test_regenerate_endpoint_is_scoped_to_own_condominium(db_session, create_condominium, create_user):
    condominium = create_condominium(linking_code="CODE0001")
    other = create_condominium(linking_code="CODE0002")
    coordinator = create_user(role="coordinator", condominium=condominium)

    client = TestClient(app)
    app.dependency_overrides[get_db] = _override_get_db(db_session)
    app.dependency_overrides[get_current_user] = _override_user(coordinator)
    try:
        resp = client.post(f"/condominiums/{condominium.id}/linking-code/regenerate")
        assert resp.status_code == 200
        body = resp.json()
        assert body["old_code"] == "CODE0001"
        assert is_valid_linking_code_format(body["new_code"])

        resp = client.post(f"/condominiums/{other.id}/linking-code/regenerate")
        assert resp.status_code == 403
    finally:
        app.dependency_overrides.clear()
        client.close()
