"""Unit tests for regatta_recon.decode."""

from __future__ import annotations

import json

import pytest

from regatta_recon.decode import (
    ImportPayloadError,
    PayloadError,
    decode_category,
    decode_crew,
    decode_distance,
    decode_import_payload,
    decode_list,
    decode_race,
    load_import_file,
)


# ---------------------------------------------------------------------------
# Import payload
# ---------------------------------------------------------------------------

RACE_FILE = {
    "race_definition": {
        "name_long": "Finale A",
        "duration": 2000,
        "duration_type": "meters",
        "boats": [
            {
                "lane_number": 1,
                "name": "ACBB",
                "class_name": "SH 4x",
                "affiliation": "ACBB",
                "participants": [{"name": "Dupont, Jean"}, {"name": "Martin, Paul"}],
            },
            {"lane_number": 2, "name": "Durand"},
        ],
    }
}


class TestDecodeImportPayload:
    def test_race_definition_wrapper(self):
        rd = decode_import_payload(RACE_FILE)
        assert rd.name == "Finale A"
        assert rd.duration == 2000
        assert rd.duration_type == "meters"
        assert len(rd.boats) == 2
        boat = rd.boats[0]
        assert boat.lane_number == 1
        assert boat.display_name == "ACBB"
        assert boat.category_label == "SH 4x"
        assert boat.affiliation_code == "ACBB"
        assert [p.display_name for p in boat.participants] == ["Dupont, Jean", "Martin, Paul"]

    def test_optional_fields_absent(self):
        boat = decode_import_payload(RACE_FILE).boats[1]
        assert boat.affiliation_code is None
        assert boat.category_label is None
        assert boat.participants == ()

    def test_camel_case_keys(self):
        rd = decode_import_payload({"boats": [{
            "laneNumber": "3",
            "displayName": "  Team   Blue ",
            "affiliationCode": "SNO",
            "categoryLabel": "J18",
            "participants": [{"displayName": "Jean Dupont"}],
        }]})
        boat = rd.boats[0]
        assert boat.lane_number == 3
        assert boat.display_name == "Team Blue"
        assert boat.affiliation_code == "SNO"
        assert boat.category_label == "J18"
        assert boat.participants[0].display_name == "Jean Dupont"

    def test_blank_participants_dropped(self):
        rd = decode_import_payload({"boats": [
            {"lane_number": 1, "name": "x", "participants": [{"name": "  "}, "Jean Dupont"]},
        ]})
        assert [p.display_name for p in rd.boats[0].participants] == ["Jean Dupont"]

    def test_missing_boats_fails_fast(self):
        with pytest.raises(ImportPayloadError, match="boats"):
            decode_import_payload({"race_definition": {"name": "x"}})

    def test_boats_not_a_list(self):
        with pytest.raises(ImportPayloadError):
            decode_import_payload({"boats": {"lane_number": 1}})

    def test_missing_lane(self):
        with pytest.raises(ImportPayloadError, match="lane_number"):
            decode_import_payload({"boats": [{"name": "x"}]})

    def test_missing_name(self):
        with pytest.raises(ImportPayloadError, match="name"):
            decode_import_payload({"boats": [{"lane_number": 1, "participants": []}]})

    def test_blank_name(self):
        with pytest.raises(ImportPayloadError, match="boat 0: missing name"):
            decode_import_payload({"boats": [{"lane_number": 1, "name": "   "}]})

    def test_duplicate_lane_rejected(self):
        with pytest.raises(ImportPayloadError, match="duplicate lane_number 1"):
            decode_import_payload({"boats": [
                {"lane_number": 1, "name": "Dupont"},
                {"lane_number": "1", "name": "Durand"},
            ]})

    def test_infinite_lane_is_non_numeric(self):
        with pytest.raises(ImportPayloadError, match="non-numeric lane_number"):
            decode_import_payload({"boats": [{"lane_number": float("inf"), "name": "x"}]})

    def test_overflowing_lane_from_json(self, tmp_path):
        p = tmp_path / "race.json"
        p.write_text('{"boats": [{"lane_number": 1e999, "name": "x"}]}', encoding="utf-8")
        with pytest.raises(ImportPayloadError, match="lane_number"):
            load_import_file(p)

    def test_participants_not_a_list(self):
        with pytest.raises(ImportPayloadError, match="participants"):
            decode_import_payload({"boats": [{"lane_number": 1, "name": "x", "participants": "Jean"}]})

    def test_root_not_object(self):
        with pytest.raises(ImportPayloadError):
            decode_import_payload([1, 2])

    def test_is_value_error(self):
        assert issubclass(ImportPayloadError, ValueError)


class TestLoadImportFile:
    def test_reads_json(self, tmp_path):
        p = tmp_path / "race.json"
        p.write_text(json.dumps(RACE_FILE), encoding="utf-8")
        assert len(load_import_file(p).boats) == 2

    def test_invalid_json(self, tmp_path):
        p = tmp_path / "race.json"
        p.write_text("{not json", encoding="utf-8")
        with pytest.raises(ImportPayloadError, match="invalid JSON"):
            load_import_file(p)


# ---------------------------------------------------------------------------
# Backend records
# ---------------------------------------------------------------------------

class TestDecodeBackendRecords:
    def test_distance(self):
        d = decode_distance({
            "id": 7, "label": "Relais", "meters": 250, "is_relay": True, "relay_count": 4,
        })
        assert d.id == "7"
        assert d.meters == 250
        assert d.is_relay is True
        assert d.relay_count == 4
        assert d.duration_seconds is None
        assert d.display_label == "Relais (Relais 4x250m)"

    def test_distance_label_falls_back_to_meters(self):
        assert decode_distance({"id": "d1", "meters": 2000}).display_label == "2000m"

    def test_category_nested_distance(self):
        c = decode_category({"id": "c1", "code": "SH", "label": "Senior Homme", "distance": {"id": "d1"}})
        assert c.distance_id == "d1"

    def test_category_without_distance(self):
        assert decode_category({"id": "c1", "code": "SH", "label": "x", "distance_id": None}).distance_id is None

    def test_race(self):
        r = decode_race({"id": "r1", "name": "Finale A", "distanceId": "d2"})
        assert r.distance_id == "d2"

    def test_missing_id(self):
        with pytest.raises(PayloadError, match="no id"):
            decode_race({"name": "x"})

    @pytest.mark.parametrize("key", ["crew_participants", "CrewParticipants", "crewParticipants"])
    def test_crew_roster_key_variants(self, key):
        crew = decode_crew({
            "id": "k1",
            "club_name": "Aviron Club",
            "club_code": "ACBB",
            key: [{"seat_position": 1, "participant": {"first_name": "Jean", "last_name": "Dupont"}}],
        })
        assert len(crew.seats) == 1
        assert crew.seats[0].participant.last_name == "Dupont"

    def test_crew_detail_roster_preferred(self):
        listing = {"id": "k1", "crew_participants": []}
        detail = {"data": {"CrewParticipants": [
            {"seatPosition": 2, "isCoxswain": True, "participant": {"firstName": "Ana", "lastName": "Ruiz"}},
        ]}}
        crew = decode_crew(listing, detail)
        assert crew.seats[0].seat_position == 2
        assert crew.seats[0].is_coxswain is True
        assert crew.seats[0].participant.first_name == "Ana"

    def test_crew_detail_without_roster_uses_listing(self):
        listing = {"id": "k1", "crew_participants": [{"participant": {"first_name": "A", "last_name": "B"}}]}
        crew = decode_crew(listing, {"data": {"id": "k1"}})
        assert crew.seats[0].participant.last_name == "B"
        assert crew.seats[0].seat_position == 1

    def test_crew_category_and_display_name(self):
        crew = decode_crew({
            "id": "k1",
            "club_name": "ACBB",
            "category": {"id": "c1", "code": "SH", "label": "Senior Homme"},
            "crew_participants": [
                {"seat_position": 2, "participant": {"first_name": "Paul", "last_name": "Martin"}},
                {"seat_position": 1, "participant": {"first_name": "Jean", "last_name": "Dupont"}},
            ],
        })
        assert crew.category.code == "SH"
        assert crew.display_name == "Dupont, Jean • Martin, Paul (Senior Homme) - ACBB"

    def test_decode_list_envelope(self):
        assert decode_list({"data": [{"id": 1}, "junk"]}, "races") == [{"id": 1}]

    def test_decode_list_none(self):
        assert decode_list(None, "races") == []

    def test_decode_list_not_list(self):
        with pytest.raises(PayloadError):
            decode_list({"data": {"id": 1}}, "races")
