import pytest

from csg.core.errors import FormatError
from csg.modules.series.document import (
    DEFAULT_SERIES_ID,
    DEFAULT_SERIES_NAME,
    Document,
    clamped_stats,
    create_default_document,
    detect_version,
    upgrade_document,
)


def test_default_document_has_one_series() -> None:
    doc = create_default_document(123)

    assert doc.active_series_id == DEFAULT_SERIES_ID
    assert doc.last_updated == 123
    s = doc.series[DEFAULT_SERIES_ID]
    assert s.name == DEFAULT_SERIES_NAME
    assert s.settings.dimensions == 3
    assert s.settings.tiers == ["F", "B", "A", "S"]


def test_json_uses_camel_case_keys() -> None:
    data = create_default_document(5).to_json()

    assert set(data) == {"activeSeriesId", "lastUpdated", "series"}
    assert "statNames" not in data["series"][DEFAULT_SERIES_ID]["settings"]


def test_detect_version() -> None:
    assert detect_version({"series": {}}) == 2
    assert detect_version({"settings": {}, "characters": []}) == 1
    with pytest.raises(FormatError):
        detect_version({"characters": []})
    with pytest.raises(FormatError):
        detect_version([1, 2])


def test_v1_is_wrapped_into_default_series() -> None:
    legacy = {
        "settings": {"dimensions": 4, "tiers": ["C", "B", "A"]},
        "characters": [{"id": "x1", "name": "Aria", "stats": [0, 1, 2, 2], "bgImage": "bg.png"}],
    }
    doc = upgrade_document(legacy)

    assert doc.active_series_id == DEFAULT_SERIES_ID
    s = doc.series[DEFAULT_SERIES_ID]
    assert s.settings.dimensions == 4
    assert s.characters[0].bg_image == "bg.png"
    assert s.characters[0].stats == [0, 1, 2, 2]


def test_unknown_fields_survive_a_round_trip() -> None:
    raw = {
        "activeSeriesId": "s1",
        "lastUpdated": 10,
        "theme": "dark",
        "series": {"s1": {"name": "Team", "settings": {"dimensions": 3, "tiers": ["F"]}, "characters": [{"id": "a", "name": "A", "stats": [0, 0, 0], "note": "hi"}]}},
    }
    out = upgrade_document(raw).to_json()

    assert out["theme"] == "dark"
    assert out["series"]["s1"]["characters"][0]["note"] == "hi"


def test_dangling_active_id_is_repaired() -> None:
    doc = Document.model_validate({"activeSeriesId": "gone", "series": {"b": {"name": "B"}, "c": {"name": "C"}}})

    assert doc.active_series_id == "b"


def test_invalid_documents_raise_format_error() -> None:
    with pytest.raises(FormatError):
        upgrade_document({"series": {}})
    with pytest.raises(FormatError):
        upgrade_document({"series": {"s": {"name": "S", "settings": {"dimensions": 2}}}})


def test_clamped_stats_fit_axes_and_tiers() -> None:
    assert clamped_stats([5, -1, 2, 9], 3, ["F", "B", "A"]) == [2, 0, 2]
    assert clamped_stats([1], 3, ["F", "B"]) == [1, 0, 0]


def test_stat_vectors_are_normalized_to_dimensions_on_load() -> None:
    doc = upgrade_document({
        "activeSeriesId": "s",
        "series": {
            "s": {
                "name": "S",
                "settings": {"dimensions": 5, "tiers": ["F", "B"], "statNames": ["Str", "Dex", "Int", "Wis", "Cha", "Luk"]},
                "characters": [{"id": "a", "name": "A", "stats": [7]}, {"id": "b", "name": "B", "stats": [1, 1, 1, 1, 1, 1, 1]}],
            }
        },
    })

    series = doc.series["s"]
    assert [c.stats for c in series.characters] == [[7, 0, 0, 0, 0], [1, 1, 1, 1, 1]]
    assert series.settings.stat_names == ["Str", "Dex", "Int", "Wis", "Cha"]

    short = Document.model_validate({"series": {"s": {"name": "S", "settings": {"dimensions": 4, "statNames": ["Str"]}}}})
    assert short.series["s"].settings.stat_names == ["Str", "Stat 2", "Stat 3", "Stat 4"]
