"""Manual-refresh inventory snapshot cache.

The inventory query is slow, so the dashboard serves the last snapshot a user
explicitly loaded. :class:`SnapshotCache` keeps that snapshot in memory and
mirrors it to a single JSON document so it survives process restarts. The
cache never talks to the database: callers fetch rows and hand them to
:meth:`SnapshotCache.refresh`.
"""

from __future__ import annotations

import json
import math
import os
import tempfile
import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

from . import log
from .errors import PersistenceError, SnapshotParseError


@dataclass(frozen=True)
class WarehouseStock:
    """Stock of one item in one warehouse at capture time."""

    warehouse_code: str
    warehouse_name: str
    on_hand: float
    committed: float
    available: float


@dataclass(frozen=True)
class InventoryItem:
    """One item with its per-warehouse stock and in-transit quantities."""

    item_code: str
    item_name: str
    list_price: Optional[float]
    warehouse_stocks: tuple[WarehouseStock, ...]
    transit_total: float
    transit_available: float

    @property
    def total_available(self) -> float:
        return sum(stock.available for stock in self.warehouse_stocks)


@dataclass(frozen=True)
class InventorySnapshot:
    """Complete, timestamped copy of the inventory dataset."""

    items: tuple[InventoryItem, ...]
    captured_at: datetime

    @property
    def item_count(self) -> int:
        return len(self.items)

    def find(self, item_code: str) -> Optional[InventoryItem]:
        for item in self.items:
            if item.item_code == item_code:
                return item
        return None


def _as_float(value: Any) -> float:
    """Coerce a database or JSON number into ``float`` (``None`` and junk -> 0)."""

    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def _as_price(value: Any) -> Optional[float]:
    # Items without a list price (missing or zero) have no price at all.
    price = _as_float(value)
    return price or None


def fold_inventory_rows(rows: Iterable[Mapping[str, Any]]) -> List[InventoryItem]:
    """Group flat item × warehouse rows into nested :class:`InventoryItem` records.

    Items keep the order in which their code first appears; each item's
    warehouses keep input order. Item-level columns are taken from the first
    row seen for that item.

    Args:
        rows (Iterable[Mapping[str, Any]]): Rows shaped like the inventory
            query output (``ItemCode``, ``ItemName``, ``PrecioVenta``,
            ``WhsCode``, ``WhsName``, ``OnHand``, ``IsCommited``,
            ``DisponibleFinal``, ``Transito_Total``, ``Transito_Disponible``).

    Returns:
        list[InventoryItem]: One entry per distinct ``ItemCode``.
    """

    headers: Dict[str, Mapping[str, Any]] = {}
    stocks: Dict[str, List[WarehouseStock]] = {}
    for row in rows:
        code = str(row["ItemCode"])
        if code not in headers:
            headers[code] = row
            stocks[code] = []
        stocks[code].append(
            WarehouseStock(
                warehouse_code=str(row.get("WhsCode") or ""),
                warehouse_name=str(row.get("WhsName") or ""),
                on_hand=_as_float(row.get("OnHand")),
                committed=_as_float(row.get("IsCommited")),
                available=_as_float(row.get("DisponibleFinal")),
            )
        )

    return [
        InventoryItem(
            item_code=code,
            item_name=str(header.get("ItemName") or ""),
            list_price=_as_price(header.get("PrecioVenta")),
            warehouse_stocks=tuple(stocks[code]),
            transit_total=_as_float(header.get("Transito_Total")),
            transit_available=_as_float(header.get("Transito_Disponible")),
        )
        for code, header in headers.items()
    ]


def serialize_snapshot(snapshot: InventorySnapshot) -> Dict[str, Any]:
    """Convert a snapshot into the JSON document stored on disk."""

    return {
        "productos": [
            {
                "ItemCode": item.item_code,
                "ItemName": item.item_name,
                "PrecioVenta": item.list_price,
                "bodegas": [
                    {
                        "WhsCode": stock.warehouse_code,
                        "WhsName": stock.warehouse_name,
                        "OnHand": stock.on_hand,
                        "IsCommited": stock.committed,
                        "DisponibleFinal": stock.available,
                    }
                    for stock in item.warehouse_stocks
                ],
                "Transito_Total": item.transit_total,
                "Transito_Disponible": item.transit_available,
            }
            for item in snapshot.items
        ],
        "ultimaActualizacion": snapshot.captured_at.isoformat(),
    }


def deserialize_snapshot(document: Any) -> InventorySnapshot:
    """Rebuild a snapshot from its JSON document.

    Raises:
        SnapshotParseError: If the document does not have the expected shape.
    """

    try:
        captured_at = datetime.fromisoformat(document["ultimaActualizacion"])
        if captured_at.tzinfo is None:
            captured_at = captured_at.replace(tzinfo=UTC)
        items = tuple(
            InventoryItem(
                item_code=str(entry["ItemCode"]),
                item_name=str(entry.get("ItemName") or ""),
                list_price=_as_price(entry.get("PrecioVenta")),
                warehouse_stocks=tuple(
                    WarehouseStock(
                        warehouse_code=str(stock.get("WhsCode") or ""),
                        warehouse_name=str(stock.get("WhsName") or ""),
                        on_hand=_as_float(stock.get("OnHand")),
                        committed=_as_float(stock.get("IsCommited")),
                        available=_as_float(stock.get("DisponibleFinal")),
                    )
                    for stock in entry.get("bodegas") or []
                ),
                transit_total=_as_float(entry.get("Transito_Total")),
                transit_available=_as_float(entry.get("Transito_Disponible")),
            )
            for entry in document["productos"]
        )
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise SnapshotParseError(f"Malformed inventory snapshot: {exc}") from exc
    return InventorySnapshot(items=items, captured_at=captured_at)


class SnapshotCache:
    """Hold the current inventory snapshot in memory and mirror it to disk.

    Readers get whichever snapshot was last published. A refresh builds a new
    snapshot, swaps it in, then overwrites the JSON file through a temporary
    file and :func:`os.replace`. The swap happens even if the write fails, in
    which case :class:`PersistenceError` is raised after the fact. Refreshes
    are serialised by a lock; concurrent ones still resolve as last write wins.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._snapshot: Optional[InventorySnapshot] = None
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def get(self) -> Optional[InventorySnapshot]:
        """Return the current snapshot, loading the JSON mirror on a cold cache.

        Returns:
            InventorySnapshot | None: ``None`` when nothing was ever loaded and
                the file is missing, unreadable, or corrupt.
        """

        snapshot = self._snapshot
        if snapshot is not None:
            return snapshot

        try:
            loaded = self._load()
        except SnapshotParseError as exc:
            log.warning("Ignoring corrupt inventory cache '%s': %s", self._path, exc)
            return None
        except PersistenceError as exc:
            log.error("%s", exc)
            return None
        if loaded is None:
            return None

        self._snapshot = loaded
        log.info(
            "Inventory cache loaded from '%s': %d items captured at %s",
            self._path,
            loaded.item_count,
            loaded.captured_at.isoformat(),
        )
        return loaded

    def refresh(self, rows: Iterable[Mapping[str, Any]]) -> InventorySnapshot:
        """Replace the snapshot with one built from ``rows`` and persist it.

        Args:
            rows (Iterable[Mapping[str, Any]]): Flat inventory rows, one per
                item × warehouse.

        Returns:
            InventorySnapshot: The newly published snapshot.

        Raises:
            PersistenceError: If the JSON mirror could not be written. The new
                snapshot is already visible through :meth:`get`.
        """

        items = tuple(fold_inventory_rows(rows))
        snapshot = InventorySnapshot(items=items, captured_at=datetime.now(UTC))
        with self._lock:
            self._snapshot = snapshot
            log.info("Inventory snapshot replaced: %d items", snapshot.item_count)
            self._save(snapshot)
        return snapshot

    def clear(self) -> None:
        """Forget the in-memory snapshot; the JSON mirror is left untouched."""

        self._snapshot = None

    def _load(self) -> Optional[InventorySnapshot]:
        if not self._path.exists():
            log.debug("No inventory cache file at '%s'", self._path)
            return None
        try:
            raw = self._path.read_bytes()
        except OSError as exc:
            raise PersistenceError(
                f"Unable to read inventory cache '{self._path}': {exc}") from exc
        try:
            document = json.loads(raw.decode("utf-8"))
        except UnicodeDecodeError as exc:
            raise SnapshotParseError(f"Not UTF-8 text: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise SnapshotParseError(f"Invalid JSON: {exc}") from exc
        return deserialize_snapshot(document)

    def _save(self, snapshot: InventorySnapshot) -> None:
        payload = json.dumps(
            serialize_snapshot(snapshot),
            indent=2,
            ensure_ascii=False,
        )
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(payload)
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            log.error("Unable to save inventory cache '%s': %s", self._path, exc)
            raise PersistenceError(
                f"Unable to save inventory cache '{self._path}': {exc}") from exc
        log.info("Inventory cache saved to '%s'", self._path)


__all__ = [
    "WarehouseStock",
    "InventoryItem",
    "InventorySnapshot",
    "SnapshotCache",
    "fold_inventory_rows",
    "serialize_snapshot",
    "deserialize_snapshot",
]
