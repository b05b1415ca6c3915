"""Unit tests documenting the inventory snapshot cache contract."""

from __future__ import annotations

import json
import threading
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import patch

import pytest

from retail_dashboard import snapshot_cache
from retail_dashboard.errors import PersistenceError, SnapshotParseError
from retail_dashboard.snapshot_cache import (
    InventorySnapshot,
    SnapshotCache,
    deserialize_snapshot,
    fold_inventory_rows,
    serialize_snapshot,
)


def _grid_rows(item_count: int, warehouse_count: int) -> list[dict]:
    """Rows for N items × M warehouses, warehouses interleaved across items."""

    rows = []
    for whs in range(warehouse_count):
        for item in range(item_count):
            rows.append({
                "ItemCode": f"I{item:03d}",
                "ItemName": f"Item {item}",
                "PrecioVenta": 10 + item,
                "WhsCode": f"W{whs}",
                "WhsName": f"Warehouse {whs}",
                "OnHand": item + whs,
                "IsCommited": 0,
                "DisponibleFinal": item + whs,
                "Transito_Total": 0,
                "Transito_Disponible": 0,
            })
    return rows


# ---------------------------------------------------------------------------
# Folding
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("item_count,warehouse_count", [(1, 1), (3, 2), (5, 4)])
def test_fold_produces_one_item_per_code(item_count, warehouse_count):
    """N items across M warehouses should fold into exactly N items."""

    items = fold_inventory_rows(_grid_rows(item_count, warehouse_count))

    assert len(items) == item_count
    assert len({item.item_code for item in items}) == item_count
    for item in items:
        assert [stock.warehouse_code for stock in item.warehouse_stocks] == [
            f"W{whs}" for whs in range(warehouse_count)
        ]


def test_fold_keeps_first_occurrence_order():
    """Items should appear in the order their code is first seen."""

    rows = [
        {"ItemCode": "B", "WhsCode": "01"},
        {"ItemCode": "A", "WhsCode": "01"},
        {"ItemCode": "B", "WhsCode": "02"},
        {"ItemCode": "C", "WhsCode": "01"},
    ]

    items = fold_inventory_rows(rows)

    assert [item.item_code for item in items] == ["B", "A", "C"]
    assert len(items[0].warehouse_stocks) == 2


def test_fold_coerces_missing_numbers(inventory_rows):
    """Nulls become zero quantities and a missing price becomes ``None``."""

    items = fold_inventory_rows(inventory_rows)
    mesa = items[1]

    assert mesa.list_price is None
    assert mesa.transit_total == 0.0
    assert mesa.transit_available == 0.0
    assert items[0].list_price == pytest.approx(899.9)
    assert items[0].total_available == pytest.approx(4.0)


def test_fold_of_no_rows_is_empty():
    assert fold_inventory_rows([]) == []


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def test_serialize_uses_durable_field_names(inventory_rows):
    """The JSON document should keep the established key names."""

    snapshot = InventorySnapshot(
        items=tuple(fold_inventory_rows(inventory_rows)),
        captured_at=datetime(2024, 5, 1, 12, 0, tzinfo=UTC),
    )

    document = serialize_snapshot(snapshot)

    assert set(document) == {"productos", "ultimaActualizacion"}
    first = document["productos"][0]
    assert set(first) == {
        "ItemCode", "ItemName", "PrecioVenta", "bodegas", "Transito_Total", "Transito_Disponible",
    }
    assert set(first["bodegas"][0]) == {"WhsCode", "WhsName", "OnHand", "IsCommited", "DisponibleFinal"}
    assert document["ultimaActualizacion"] == "2024-05-01T12:00:00+00:00"


def test_deserialize_accepts_naive_timestamps():
    """Timestamps written without an offset are read as UTC."""

    snapshot = deserialize_snapshot({
        "productos": [],
        "ultimaActualizacion": "2024-05-01T12:00:00.123",
    })

    assert snapshot.captured_at.tzinfo is not None
    assert snapshot.captured_at.utcoffset() == timedelta(0)


@pytest.mark.parametrize(
    "document",
    [
        {},
        [],
        {"productos": [], "ultimaActualizacion": "yesterday"},
        {"productos": [{"ItemName": "no code"}], "ultimaActualizacion": "2024-05-01T00:00:00"},
    ],
)
def test_deserialize_rejects_malformed_documents(document):
    with pytest.raises(SnapshotParseError):
        deserialize_snapshot(document)


# ---------------------------------------------------------------------------
# SnapshotCache
# ---------------------------------------------------------------------------


def test_get_without_file_returns_none(tmp_path: Path):
    cache = SnapshotCache(tmp_path / "missing.json")

    assert cache.get() is None


def test_refresh_then_get_does_not_read_disk(tmp_path: Path, inventory_rows):
    """After a refresh the snapshot is served from memory."""

    cache = SnapshotCache(tmp_path / "cache.json")
    before = datetime.now(UTC)
    refreshed = cache.refresh(inventory_rows)

    with patch.object(SnapshotCache, "_load", side_effect=AssertionError("disk read")):
        current = cache.get()

    assert current is refreshed
    assert current.captured_at >= before


def test_refresh_stamps_current_utc_time(tmp_path: Path, inventory_rows, set_fixed_datetime):
    moment = set_fixed_datetime(datetime(2024, 6, 3, 15, 30, tzinfo=UTC))
    cache = SnapshotCache(tmp_path / "cache.json")

    snapshot = cache.refresh(inventory_rows)

    assert snapshot.captured_at == moment


def test_refresh_get_and_restart_round_trip(tmp_path: Path, inventory_rows):
    """Three rows for X001/X002 survive a refresh, a restart and a reload."""

    path = tmp_path / "cache.json"
    cache = SnapshotCache(path)
    refreshed = cache.refresh(inventory_rows)

    current = cache.get()
    assert current.item_count == 2
    x001 = current.find("X001")
    assert x001 is not None
    assert len(x001.warehouse_stocks) == 2
    assert len(current.find("X002").warehouse_stocks) == 1

    cache.clear()
    assert path.exists()
    reloaded = cache.get()
    assert reloaded == refreshed

    fresh_process = SnapshotCache(path)
    assert fresh_process.get() == refreshed


def test_refresh_writes_json_document(tmp_path: Path, inventory_rows):
    path = tmp_path / "nested" / "cache.json"
    SnapshotCache(path).refresh(inventory_rows)

    document = json.loads(path.read_text(encoding="utf-8"))

    assert [entry["ItemCode"] for entry in document["productos"]] == ["X001", "X002"]
    assert not list(path.parent.glob("*.tmp"))


def test_refresh_replaces_previous_snapshot(tmp_path: Path, inventory_rows):
    cache = SnapshotCache(tmp_path / "cache.json")
    cache.refresh(inventory_rows)

    second = cache.refresh(inventory_rows[2:])

    assert cache.get() is second
    assert [item.item_code for item in second.items] == ["X002"]


def test_persistence_failure_keeps_new_snapshot_visible(tmp_path: Path, inventory_rows):
    """A failed write raises but does not roll back the in-memory swap."""

    cache = SnapshotCache(tmp_path / "cache.json")

    with patch.object(snapshot_cache.os, "replace", side_effect=OSError("disk full")):
        with pytest.raises(PersistenceError):
            cache.refresh(inventory_rows)

    current = cache.get()
    assert current is not None
    assert current.item_count == 2
    assert not (tmp_path / "cache.json").exists()
    assert not list(tmp_path.glob("*.tmp"))


def test_persistence_failure_keeps_old_file(tmp_path: Path, inventory_rows):
    path = tmp_path / "cache.json"
    cache = SnapshotCache(path)
    cache.refresh(inventory_rows)
    original = path.read_text(encoding="utf-8")

    with patch.object(snapshot_cache.os, "replace", side_effect=OSError("disk full")):
        with pytest.raises(PersistenceError):
            cache.refresh(inventory_rows[:1])

    assert path.read_text(encoding="utf-8") == original
    assert cache.get().item_count == 1


def test_corrupt_file_is_treated_as_absent(tmp_path: Path):
    path = tmp_path / "cache.json"
    path.write_text("{not json", encoding="utf-8")

    assert SnapshotCache(path).get() is None


def test_undecodable_file_is_treated_as_absent(tmp_path: Path):
    path = tmp_path / "cache.json"
    path.write_bytes(b'{"productos": [], "ultimaActualizacion": "\xff\xfe"}')

    assert SnapshotCache(path).get() is None


def test_unreadable_file_is_treated_as_absent(tmp_path: Path):
    path = tmp_path / "cache.json"
    path.mkdir()

    assert SnapshotCache(path).get() is None


def test_concurrent_refreshes_leave_memory_and_disk_in_agreement(tmp_path: Path, inventory_rows):
    path = tmp_path / "cache.json"
    cache = SnapshotCache(path)
    barrier = threading.Barrier(2)
    errors: list[Exception] = []

    def _refresh(rows):
        barrier.wait()
        try:
            cache.refresh(rows)
        except Exception as exc:
            errors.append(exc)

    workers = [
        threading.Thread(target=_refresh, args=(inventory_rows,)),
        threading.Thread(target=_refresh, args=(inventory_rows[2:],)),
    ]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join(timeout=10)

    assert errors == []
    in_memory = cache.get()
    assert in_memory.item_count in (1, 2)
    assert SnapshotCache(path).get() == in_memory
    assert not list(tmp_path.glob("*.tmp"))


def test_wrongly_shaped_file_is_treated_as_absent(tmp_path: Path):
    path = tmp_path / "cache.json"
    path.write_text(json.dumps({"productos": "nope"}), encoding="utf-8")

    assert SnapshotCache(path).get() is None


def test_cold_get_reads_file_written_elsewhere(tmp_path: Path):
    """Files in the established format load without a prior refresh."""

    path = tmp_path / "cache.json"
    path.write_text(json.dumps({
        "productos": [{
            "ItemCode": "A1",
            "ItemName": "Silla",
            "PrecioVenta": 120.5,
            "bodegas": [{"WhsCode": "01", "WhsName": "Bosque", "OnHand": 3,
                         "IsCommited": 1, "DisponibleFinal": 2}],
            "Transito_Total": 0,
            "Transito_Disponible": 0,
        }],
        "ultimaActualizacion": "2024-05-01T10:00:00.000+00:00",
    }), encoding="utf-8")

    snapshot = SnapshotCache(path).get()

    assert snapshot.item_count == 1
    assert snapshot.items[0].warehouse_stocks[0].available == 2.0
