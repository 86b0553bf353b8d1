import datetime

import pytest

from csg.core.errors import NotFoundError
from csg.modules.exports_imports.service import (
    backup_filename,
    export_document,
    export_series,
    series_filename,
    slugify,
)
from csg.modules.series.service import SeriesStore


def test_backup_filename_is_date_stamped() -> None:
    assert backup_filename(datetime.date(2024, 3, 9)) == "csg_backup_2024-03-09.json"


def test_series_filename_is_slugified() -> None:
    assert series_filename("Fire Emblem: Três Casas") == "csg_series_fire_emblem_tres_casas.json"
    assert slugify("  ???  ") == "series"


def test_full_export_is_the_document_verbatim(store: SeriesStore) -> None:
    store.save_character({"name": "A", "stats": [1, 2, 3]})
    name, data = export_document(store, datetime.date(2024, 1, 2))

    assert name == "csg_backup_2024-01-02.json"
    assert data == store.document.to_json()


def test_single_series_envelope(store: SeriesStore) -> None:
    store.rename_series(store.active_series_id, "My Team")
    store.save_character({"name": "A", "stats": [1, 2, 3]})
    name, data = export_series(store, store.active_series_id)

    assert name == "csg_series_my_team.json"
    assert data["version"] == "single_series"
    assert data["name"] == "My Team"
    assert data["settings"]["dimensions"] == 3
    assert data["characters"][0]["stats"] == [1, 2, 3]


def test_export_unknown_series(store: SeriesStore) -> None:
    with pytest.raises(NotFoundError):
        export_series(store, "missing")
