import pytest

from submission_intake.core.exceptions import FieldPathError
from submission_intake.utils.field_path import (
    IndexSegment,
    KeySegment,
    format_path,
    get_by_path,
    join_index,
    join_key,
    parse_path,
    set_by_path,
)


class TestParsePath:

    def test_nested_keys_and_indices(self):
        assert parse_path("locations[2].buildings[1].yearBuilt") == (
            KeySegment("locations"),
            IndexSegment(2),
            KeySegment("buildings"),
            IndexSegment(1),
            KeySegment("yearBuilt"),
        )

    def test_single_key(self):
        assert parse_path("submission") == (KeySegment("submission"),)

    @pytest.mark.parametrize(
        "path",
        ["", "[0].name", "a..b", "a.", ".a", "a[0]b", "a[x]", "a[1"],
    )
    def test_malformed_paths_raise(self, path):
        with pytest.raises(FieldPathError):
            parse_path(path)

    def test_format_is_inverse_of_parse(self):
        for path in ["submission.namedInsured", "locations[0].buildings[3].buildingSqFt", "lossHistory"]:
            assert format_path(parse_path(path)) == path

    def test_join_helpers(self):
        assert join_key("", "submission") == "submission"
        assert join_key("submission", "namedInsured") == "submission.namedInsured"
        assert join_index("locations", 4) == "locations[4]"


class TestGetAndSetByPath:

    def test_set_creates_intermediate_containers(self):
        data = {}
        set_by_path(data, "locations[2].buildings[1].yearBuilt", 1987)

        assert len(data["locations"]) == 3
        assert data["locations"][0] == {}
        assert data["locations"][2]["buildings"][1] == {"yearBuilt": 1987}
        assert get_by_path(data, "locations[2].buildings[1].yearBuilt") == 1987

    def test_set_then_get_round_trip_keeps_siblings(self):
        data = {}
        set_by_path(data, "submission.namedInsured", "Acme Storage LLC")
        set_by_path(data, "submission.effectiveDate", "2025-04-01")
        set_by_path(data, "locations[0].city", "Austin")
        set_by_path(data, "locations[0].buildings[0].buildingSqFt", 12000)

        assert data == {
            "submission": {"namedInsured": "Acme Storage LLC", "effectiveDate": "2025-04-01"},
            "locations": [{"city": "Austin", "buildings": [{"buildingSqFt": 12000}]}],
        }

    def test_padded_placeholder_becomes_list_when_indexed(self):
        data = {"locations": [{}]}
        set_by_path(data, "locations[0].buildings[0].yearBuilt", 2001)
        assert data["locations"][0]["buildings"] == [{"yearBuilt": 2001}]

    def test_get_missing_returns_default(self):
        data = {"locations": [{"city": "Austin"}]}
        assert get_by_path(data, "locations[3].city") is None
        assert get_by_path(data, "locations[0].zip", default="n/a") == "n/a"
        assert get_by_path(data, "coverage.buildingLimit") is None

    def test_set_through_scalar_raises(self):
        data = {"submission": "not an object"}
        with pytest.raises(FieldPathError):
            set_by_path(data, "submission.namedInsured", "Acme")

    def test_index_on_object_raises(self):
        data = {"locations": {"city": "Austin"}}
        with pytest.raises(FieldPathError):
            set_by_path(data, "locations[0].city", "Dallas")
