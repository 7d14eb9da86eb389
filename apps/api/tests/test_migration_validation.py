"""
Tests for per-record validation and sanitization of imported players.
"""
import pytest

from services.migration_errors import ValidationError
from services.migration_validation import (
    MAX_DURATION_MS,
    MAX_USERNAMES,
    validate_modification_event,
    validate_player_record,
)
from tests.migration_helpers import make_player_record, make_punishment


class TestValidRecords:
    def test_minimal_record(self):
        doc = validate_player_record({"minecraftUuid": "U1"}, index=0)
        assert doc == {
            "minecraftUuid": "U1",
            "usernames": [],
            "notes": [],
            "ipList": [],
            "punishments": [],
            "data": {},
        }

    def test_strings_are_trimmed_and_dates_normalized(self):
        doc = validate_player_record(
            make_player_record(
                "  U1  ",
                usernames=[{"username": " Steve ", "date": "2023-01-01T00:00:00Z"}],
            ),
            index=0,
        )
        assert doc["minecraftUuid"] == "U1"
        assert doc["usernames"] == [{"username": "Steve", "date": "2023-01-01T00:00:00.000Z"}]

    def test_epoch_millis_dates_are_accepted(self):
        doc = validate_player_record(
            make_player_record(usernames=[{"username": "Steve", "date": 1672531200000}]),
        )
        assert doc["usernames"][0]["date"] == "2023-01-01T00:00:00.000Z"

    def test_note_text_starting_with_operator_prefix_is_kept_verbatim(self):
        doc = validate_player_record(make_player_record(notes=[{"text": "$where", "issuerName": "Mod"}]))
        assert doc["notes"][0]["text"] == "$where"

    def test_plain_string_notes_are_accepted(self):
        doc = validate_player_record(make_player_record(notes=["watch this one"]))
        assert doc["notes"] == [{"text": "watch this one", "date": None, "issuerName": None}]

    def test_ip_entry_normalization(self):
        doc = validate_player_record(
            make_player_record(
                ipList=[
                    {
                        "ipAddress": "192.168.1.20",
                        "asn": 13335,
                        "proxy": "true",
                        "hosting": False,
                        "logins": ["2023-01-03T00:00:00Z", "2023-01-02T00:00:00Z", "2023-01-03T00:00:00Z"],
                    }
                ]
            )
        )
        entry = doc["ipList"][0]
        assert entry["asn"] == "AS13335"
        assert entry["proxy"] is True
        assert entry["hosting"] is False
        assert entry["logins"] == ["2023-01-02T00:00:00.000Z", "2023-01-03T00:00:00.000Z"]
        # firstLogin falls back to the earliest login
        assert entry["firstLogin"] == "2023-01-02T00:00:00.000Z"

    def test_punishment_normalization(self):
        raw = make_punishment(
            None,
            _id=42,
            reason="$ne spam",
            duration=-1,
            modifications=[{"type": "manual_pardon", "issuerName": "Mod", "issued": "2023-01-02T00:00:00Z"}],
        )
        raw.pop("id")
        doc = validate_player_record(make_player_record(punishments=[raw]))
        punishment = doc["punishments"][0]
        assert punishment["id"] == "42"
        assert punishment["reason"] == "$ne spam"
        assert punishment["duration"] == -1
        assert punishment["modifications"][0]["type"] == "MANUAL_PARDON"
        assert punishment["modifications"][0]["issued"] == "2023-01-02T00:00:00.000Z"

    def test_duplicates_inside_one_record_are_collapsed(self):
        doc = validate_player_record(
            make_player_record(
                usernames=[{"username": "Steve"}, {"username": "Steve"}, {"username": "Alex"}],
                ipList=[
                    {"ipAddress": "10.0.0.1", "logins": ["2023-01-02T00:00:00Z"]},
                    {"ipAddress": "10.0.0.1", "country": "US", "logins": ["2023-01-01T00:00:00Z"]},
                ],
                punishments=[make_punishment("P1"), make_punishment("P1", reason="other")],
            )
        )
        assert [u["username"] for u in doc["usernames"]] == ["Steve", "Alex"]
        assert len(doc["ipList"]) == 1
        assert doc["ipList"][0]["country"] == "US"
        assert doc["ipList"][0]["logins"] == ["2023-01-01T00:00:00.000Z", "2023-01-02T00:00:00.000Z"]
        assert [p["reason"] for p in doc["punishments"]] == ["spam"]


class TestSanitizedMaps:
    def test_operator_and_prototype_keys_are_dropped_at_every_depth(self):
        doc = validate_player_record(
            make_player_record(
                data={
                    "$set": {"admin": True},
                    "__proto__": {"polluted": True},
                    "rank": "vip",
                    "nested": {"constructor": 1, "prototype": 2, "ok": [{"$gt": 1, "x": 1}]},
                }
            )
        )
        assert doc["data"] == {"rank": "vip", "nested": {"ok": [{"x": 1}]}}

    def test_punishment_data_is_sanitized(self):
        doc = validate_player_record(
            make_player_record(punishments=[make_punishment("P1", data={"$where": "1", "expires": None})])
        )
        assert doc["punishments"][0]["data"] == {"expires": None}

    def test_data_must_be_an_object(self):
        with pytest.raises(ValidationError, match="data: must be an object"):
            validate_player_record(make_player_record(data=["x"]))


class TestInvalidRecords:
    def test_record_must_be_an_object(self):
        with pytest.raises(ValidationError) as exc:
            validate_player_record("U1", index=3)
        assert exc.value.index == 3

    def test_missing_minecraft_uuid(self):
        with pytest.raises(ValidationError) as exc:
            validate_player_record({"usernames": []}, index=7)
        assert exc.value.field == "minecraftUuid"
        assert exc.value.index == 7
        assert str(exc.value).startswith("player[7].minecraftUuid")

    def test_identifier_with_operator_prefix_is_rejected(self):
        with pytest.raises(ValidationError, match="minecraftUuid: contains invalid characters"):
            validate_player_record({"minecraftUuid": "$gt"})

    def test_username_with_operator_prefix_is_rejected(self):
        with pytest.raises(ValidationError, match=r"usernames\[0\]\.username"):
            validate_player_record(make_player_record(usernames=[{"username": "$ne"}]))

    def test_too_long_identifier(self):
        with pytest.raises(ValidationError, match="exceeds maximum length of 64"):
            validate_player_record({"minecraftUuid": "x" * 65})

    @pytest.mark.parametrize(
        "address", ["256.1.1.1", "10.0.0", "abc", "::1", "\u0661.\u0662.\u0663.\u0664", "10.0.0.1\n1"]
    )
    def test_invalid_ip_address(self, address):
        record = make_player_record(ipList=[{"ipAddress": address, "logins": []}])
        with pytest.raises(ValidationError, match=r"ipList\[0\]\.ipAddress"):
            validate_player_record(record)

    @pytest.mark.parametrize("date", ["1969-12-31T23:59:59Z", "2101-01-01T00:00:00Z"])
    def test_date_out_of_range(self, date):
        with pytest.raises(ValidationError, match="out of valid range"):
            validate_player_record(make_player_record(usernames=[{"username": "Steve", "date": date}]))

    def test_unparseable_date(self):
        with pytest.raises(ValidationError, match="is not a valid date"):
            validate_player_record(make_player_record(punishments=[make_punishment("P1", issued="yesterday")]))

    def test_negative_duration_other_than_permanent_marker(self):
        with pytest.raises(ValidationError, match="duration"):
            validate_player_record(make_player_record(punishments=[make_punishment("P1", duration=-5)]))

    @pytest.mark.parametrize("duration", [MAX_DURATION_MS + 1, 9223372036854775807])
    def test_duration_above_cap(self, duration):
        with pytest.raises(ValidationError, match="must be at most"):
            validate_player_record(make_player_record(punishments=[make_punishment("P1", duration=duration)]))

    def test_duration_at_cap_is_accepted(self):
        doc = validate_player_record(make_player_record(punishments=[make_punishment("P1", duration=MAX_DURATION_MS)]))
        assert doc["punishments"][0]["duration"] == MAX_DURATION_MS

    def test_length_cap_applies_after_trimming(self):
        doc = validate_player_record({"minecraftUuid": "  " + "x" * 64 + "  "})
        assert doc["minecraftUuid"] == "x" * 64

    def test_boolean_must_be_boolean(self):
        record = make_player_record(ipList=[{"ipAddress": "10.0.0.1", "proxy": "yes", "logins": []}])
        with pytest.raises(ValidationError, match="must be a boolean"):
            validate_player_record(record)

    def test_punishment_requires_issuer(self):
        punishment = make_punishment("P1")
        del punishment["issuerName"]
        with pytest.raises(ValidationError, match="issuerName"):
            validate_player_record(make_player_record(punishments=[punishment]))

    def test_array_cap(self):
        usernames = [{"username": f"u{i}"} for i in range(MAX_USERNAMES + 1)]
        with pytest.raises(ValidationError, match=f"exceeds maximum length of {MAX_USERNAMES}"):
            validate_player_record(make_player_record(usernames=usernames))

    def test_array_field_must_be_array(self):
        with pytest.raises(ValidationError, match="notes: must be an array"):
            validate_player_record(make_player_record(notes="hello"))


class TestModificationEvent:
    def test_valid_event(self):
        event = validate_modification_event(
            {
                "type": "manual_duration_change",
                "issuerName": "Mod",
                "issued": "2024-01-01T00:00:00Z",
                "effectiveDuration": 3_600_000,
                "reason": "$reduced",
            }
        )
        assert event["type"] == "MANUAL_DURATION_CHANGE"
        assert event["effectiveDuration"] == 3_600_000
        assert event["reason"] == "$reduced"

    def test_event_requires_issued(self):
        with pytest.raises(ValidationError, match="issued"):
            validate_modification_event({"type": "MANUAL_PARDON", "issuerName": "Mod"})
