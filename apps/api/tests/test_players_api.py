"""
API tests for player reads and punishment modifications.
"""
from datetime import timedelta

import pytest

from services.migration_validation import validate_player_record
from services.player_store import InsertOne, PlayerStore
from services.timestamps import format_timestamp, utcnow
from tests.migration_helpers import make_player_record, make_punishment


def _headers(tenant):
    return {"X-Server-Name": tenant.slug}


@pytest.fixture
def player(db_session, tenant):
    recent = format_timestamp(utcnow() - timedelta(hours=1))
    record = make_player_record(
        "U1",
        punishments=[
            make_punishment("P1", issued=recent, started=recent, duration=-1),
            make_punishment("P2"),  # one day long, started in 2023
        ],
    )
    PlayerStore(db_session, tenant.id).bulk_write([InsertOne(validate_player_record(record))])
    return record


def _post_modification(client, tenant, payload, punishment_id="P1", uuid="U1"):
    return client.post(
        f"/v1/players/{uuid}/punishments/{punishment_id}/modifications",
        headers=_headers(tenant),
        json=payload,
    )


class TestReads:
    def test_player_with_effective_state(self, client, tenant, player):
        response = client.get("/v1/players/U1", headers=_headers(tenant))

        assert response.status_code == 200
        body = response.json()
        assert body["minecraftUuid"] == "U1"
        by_id = {p["id"]: p for p in body["punishments"]}
        assert by_id["P1"]["effectiveActive"] is True
        assert by_id["P1"]["effectiveExpiry"] is None
        assert by_id["P2"]["effectiveActive"] is False
        assert by_id["P2"]["reason"] == "spam"

    def test_unknown_player(self, client, tenant):
        response = client.get("/v1/players/nobody", headers=_headers(tenant))
        assert response.status_code == 404
        assert response.json() == {"detail": "Player not found: nobody", "error_code": "NOT_FOUND"}

    def test_player_of_another_tenant_is_invisible(self, client, other_tenant, player):
        response = client.get("/v1/players/U1", headers=_headers(other_tenant))
        assert response.status_code == 404

    def test_active_punishments(self, client, tenant, player):
        response = client.get("/v1/players/U1/active-punishments", headers=_headers(tenant))

        assert response.status_code == 200
        assert [p["id"] for p in response.json()["punishments"]] == ["P1"]


class TestModifications:
    def test_pardon_deactivates(self, client, tenant, player):
        response = _post_modification(client, tenant, {"type": "MANUAL_PARDON", "issuerName": "Mod"})

        assert response.status_code == 200
        body = response.json()
        assert body["modification"]["type"] == "MANUAL_PARDON"
        assert body["punishment"]["effectiveActive"] is False
        assert body["punishment"]["hasModifications"] is True

        active = client.get("/v1/players/U1/active-punishments", headers=_headers(tenant)).json()
        assert active["punishments"] == []

    def test_duration_change_reactivates_expired_punishment(self, client, tenant, player):
        response = _post_modification(
            client,
            tenant,
            {"type": "MANUAL_DURATION_CHANGE", "issuerName": "Mod", "effectiveDuration": 3_600_000},
            punishment_id="P2",
        )

        punishment = response.json()["punishment"]
        assert punishment["effectiveActive"] is True
        assert punishment["effectiveDuration"] == 3_600_000
        assert punishment["effectiveExpiry"] is not None

    def test_duration_change_requires_duration(self, client, tenant, player):
        response = _post_modification(client, tenant, {"type": "MANUAL_DURATION_CHANGE", "issuerName": "Mod"})
        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_MODIFICATION"

    def test_unknown_type(self, client, tenant, player):
        response = _post_modification(client, tenant, {"type": "EXPLODE", "issuerName": "Mod"})
        assert response.status_code == 400

    def test_reason_may_start_with_dollar(self, client, tenant, player):
        response = _post_modification(
            client, tenant, {"type": "APPEAL_REJECT", "issuerName": "Mod", "reason": "$0 refund"}
        )
        assert response.status_code == 200
        assert response.json()["modification"]["reason"] == "$0 refund"

    def test_unknown_punishment(self, client, tenant, player):
        response = _post_modification(client, tenant, {"type": "MANUAL_PARDON", "issuerName": "Mod"}, punishment_id="P9")
        assert response.status_code == 404
        assert response.json()["detail"] == "Punishment not found: P9"

    def test_unknown_player(self, client, tenant):
        response = _post_modification(client, tenant, {"type": "MANUAL_PARDON", "issuerName": "Mod"}, uuid="nobody")
        assert response.status_code == 404

    def test_duration_above_cap_is_rejected_and_nothing_is_stored(self, client, tenant, player):
        response = _post_modification(
            client,
            tenant,
            {"type": "MANUAL_DURATION_CHANGE", "issuerName": "Mod", "effectiveDuration": 10**18},
        )
        assert response.status_code == 422

        body = client.get("/v1/players/U1", headers=_headers(tenant)).json()
        by_id = {p["id"]: p for p in body["punishments"]}
        assert by_id["P1"]["modifications"] == []
        assert by_id["P1"]["effectiveActive"] is True


def test_player_with_oversized_stored_duration_is_readable(client, db_session, tenant):
    recent = format_timestamp(utcnow() - timedelta(hours=1))
    document = validate_player_record(make_player_record("U9"))
    document["punishments"] = [
        {**make_punishment("P1", issued=recent, started=recent), "duration": 9223372036854775807}
    ]
    PlayerStore(db_session, tenant.id).bulk_write([InsertOne(document)])

    response = client.get("/v1/players/U9/active-punishments", headers=_headers(tenant))

    assert response.status_code == 200
    (punishment,) = response.json()["punishments"]
    assert punishment["effectiveExpiry"] is None
