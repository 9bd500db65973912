"""
Sales History Store

Daily sales records and the read interface the menu engine consumes.

A store answers two questions for the engine:
- which dates inside a window have a saved record (list_dates)
- what was sold on one of those dates (read)

Both stores below keep a sorted date index so range queries are a bisect
plus a slice, not a scan over every saved key.
"""

import bisect
import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import pandas as pd


def normalize_date(value) -> str:
    """Return an ISO `YYYY-MM-DD` string for a date-like value."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValueError("Date is required")
    try:
        ts = pd.Timestamp(value)
    except (ValueError, TypeError) as e:
        raise ValueError(f"Invalid date: {value!r}") from e
    if pd.isna(ts):
        raise ValueError(f"Invalid date: {value!r}")
    return ts.strftime("%Y-%m-%d")


@dataclass
class DailyRecord:
    """
    One day of entered sales.

    Attributes:
        date: ISO date string
        item_quantities: item_id -> quantity sold that day (absent means 0)
        pos_sales: Total reported by the point-of-sale terminal
        orders: Number of orders
        visit_count: Number of visitors
        note: Free-text note for the day
        monthly_target: Sales target for the month the day belongs to
        total_sales: Menu-tally total saved alongside the POS figure
    """
    date: str
    item_quantities: Dict[str, int] = field(default_factory=dict)
    pos_sales: float = 0.0
    orders: int = 0
    visit_count: int = 0
    note: str = ""
    monthly_target: float = 0.0
    total_sales: Optional[float] = None

    def __post_init__(self):
        self.date = normalize_date(self.date)
        if self.total_sales is None:
            self.total_sales = self.pos_sales

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict) -> "DailyRecord":
        quantities = payload.get("item_quantities") or {}
        return cls(
            date=payload["date"],
            item_quantities={str(k): int(v) for k, v in quantities.items()},
            pos_sales=float(payload.get("pos_sales", 0) or 0),
            orders=int(payload.get("orders", 0) or 0),
            visit_count=int(payload.get("visit_count", 0) or 0),
            note=payload.get("note", "") or "",
            monthly_target=float(payload.get("monthly_target", 0) or 0),
            total_sales=payload.get("total_sales"),
        )


class HistoryReader(ABC):
    """Read side of a history store, as seen by the menu engine."""

    @abstractmethod
    def list_dates(self, start, end) -> List[str]: ...

    @abstractmethod
    def read(self, date) -> Optional[DailyRecord]: ...


class _SortedDateIndex:
    """Sorted list of ISO dates with inclusive range lookup."""

    def __init__(self, dates=None):
        self._dates: List[str] = sorted(set(dates or []))

    def add(self, date: str) -> None:
        pos = bisect.bisect_left(self._dates, date)
        if pos == len(self._dates) or self._dates[pos] != date:
            self._dates.insert(pos, date)

    def remove(self, date: str) -> None:
        pos = bisect.bisect_left(self._dates, date)
        if pos < len(self._dates) and self._dates[pos] == date:
            del self._dates[pos]

    def between(self, start: str, end: str) -> List[str]:
        if start > end:
            return []
        lo = bisect.bisect_left(self._dates, start)
        hi = bisect.bisect_right(self._dates, end)
        return self._dates[lo:hi]

    def __len__(self):
        return len(self._dates)


def _month_bounds(year_month: str) -> tuple[str, str]:
    period = pd.Period(year_month, freq="M")
    return period.start_time.strftime("%Y-%m-%d"), period.end_time.strftime("%Y-%m-%d")


class InMemoryHistoryStore(HistoryReader):
    """Dict-backed store. Used by tests, demos and CSV imports."""

    def __init__(self, records=None):
        self._records: Dict[str, DailyRecord] = {}
        self._index = _SortedDateIndex()
        for record in records or []:
            self.save(record)

    def save(self, record: DailyRecord) -> None:
        self._records[record.date] = record
        self._index.add(record.date)

    def read(self, date) -> Optional[DailyRecord]:
        return self._records.get(normalize_date(date))

    def delete(self, date) -> None:
        key = normalize_date(date)
        self._records.pop(key, None)
        self._index.remove(key)

    def list_dates(self, start, end) -> List[str]:
        return self._index.between(normalize_date(start), normalize_date(end))

    def list_dates_in_month(self, year_month: str) -> List[str]:
        return self.list_dates(*_month_bounds(year_month))

    def monthly_total(self, year_month: str) -> float:
        return sum(
            float(self._records[d].total_sales or 0)
            for d in self.list_dates_in_month(year_month)
        )

    def __len__(self):
        return len(self._index)


class JsonHistoryStore(HistoryReader):
    """
    One JSON file per day (`<root>/<YYYY-MM-DD>.json`).

    The date index is built from file names once, then kept in step with
    save/delete, so listing a window never re-reads the directory.
    """

    def __init__(self, root_dir: str, create: bool = True):
        self.root = Path(root_dir)
        if not self.root.exists():
            if not create:
                raise FileNotFoundError(f"History directory not found: {root_dir}")
            os.makedirs(self.root, exist_ok=True)
        dates = []
        for path in self.root.glob("*.json"):
            try:
                dates.append(normalize_date(path.stem))
            except ValueError:
                print(f"⚠️  WARNING: Ignoring unrecognised file in history dir: {path.name}")
        self._index = _SortedDateIndex(dates)

    def _path(self, date: str) -> Path:
        return self.root / f"{date}.json"

    def save(self, record: DailyRecord) -> None:
        with open(self._path(record.date), "w", encoding="utf-8") as f:
            json.dump(record.to_dict(), f, ensure_ascii=False, indent=2)
        self._index.add(record.date)

    def read(self, date) -> Optional[DailyRecord]:
        key = normalize_date(date)
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                payload = json.load(f)
            payload.setdefault("date", key)
            return DailyRecord.from_dict(payload)
        except (json.JSONDecodeError, KeyError, ValueError, TypeError) as e:
            print(f"⚠️  WARNING: Failed to parse sales data for {key}: {e}")
            return None

    def delete(self, date) -> None:
        key = normalize_date(date)
        path = self._path(key)
        if path.exists():
            path.unlink()
        self._index.remove(key)

    def list_dates(self, start, end) -> List[str]:
        return self._index.between(normalize_date(start), normalize_date(end))

    def list_dates_in_month(self, year_month: str) -> List[str]:
        return self.list_dates(*_month_bounds(year_month))

    def monthly_total(self, year_month: str) -> float:
        total = 0.0
        for d in self.list_dates_in_month(year_month):
            record = self.read(d)
            if record is not None:
                total += float(record.total_sales or 0)
        return total

    def __len__(self):
        return len(self._index)


# =============================================================================
# CSV IMPORT
# =============================================================================

DEFAULT_HISTORY_COLUMN_MAP = {
    "Date": "date",
    "Sale Date": "date",
    "Order Date": "date",
    "Item ID": "item_id",
    "ID": "item_id",
    "Item": "item_name",
    "Item Name": "item_name",
    "Menu Item": "item_name",
    "Quantity": "qty",
    "Qty": "qty",
}


def load_sales_history_csv(path: str,
                           catalog_df: pd.DataFrame,
                           column_map: dict = None) -> InMemoryHistoryStore:
    """
    Build an in-memory store from a long-format sales export.

    Rows need a date, a quantity and either an item_id or an item_name that
    matches the catalog. Rows whose name is not in the catalog are kept under
    the raw name so the engine can count them as uncataloged.
    """
    raw = pd.read_csv(path, encoding="utf-8-sig")
    mapping = DEFAULT_HISTORY_COLUMN_MAP.copy()
    if column_map:
        mapping.update(column_map)
    df = raw.rename(columns={k: v for k, v in mapping.items() if k in raw.columns})

    if "date" not in df.columns or "qty" not in df.columns:
        raise ValueError(
            f"❌ CRITICAL: Sales history missing required columns (date, qty).\n"
            f"Available columns: {list(raw.columns)}"
        )
    if "item_id" not in df.columns and "item_name" not in df.columns:
        raise ValueError("❌ CRITICAL: Sales history needs an item_id or item_name column.")

    df["date"] = pd.to_datetime(df["date"], errors="coerce")
    bad_dates = int(df["date"].isna().sum())
    if bad_dates > 0:
        print(f"⚠️  WARNING: {bad_dates} sales rows have unparseable dates (dropped)")
        df = df.dropna(subset=["date"])
    df["date"] = df["date"].dt.strftime("%Y-%m-%d")
    df["qty"] = pd.to_numeric(df["qty"], errors="coerce").fillna(0).astype(int)

    if "item_id" not in df.columns:
        name_to_id = dict(zip(catalog_df["item_name"], catalog_df["item_id"]))
        df["item_id"] = df["item_name"].map(name_to_id).fillna(df["item_name"])
    df["item_id"] = df["item_id"].astype(str)

    daily = df.groupby(["date", "item_id"])["qty"].sum().reset_index()
    store = InMemoryHistoryStore()
    for date, group in daily.groupby("date"):
        store.save(DailyRecord(
            date=date,
            item_quantities={iid: int(q) for iid, q in zip(group["item_id"], group["qty"])},
        ))
    return store
