# %% [markdown]
# # Sales Coach – Menu Engineering Engine
#
# Daily sales entry analysis for a single store:
#
# - Built-in or client menu catalog
# - POS reconciliation for a saved day
# - Monthly / period sales statistics
# - Menu engineering (Stars, Cash Cows, Puzzles, Dogs) over a trailing window
# - Boost plans for the next day (see promotions_module.py)
# - Chart + a plain-text export block for the report writer
#
# History is read through a store from history_store.py; nothing here
# decides how days are persisted.


# %%
import math
import os

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
from dataclasses import dataclass, field
from difflib import get_close_matches
from typing import Dict, List, Optional

from history_store import normalize_date

pd.set_option("display.float_format", lambda x: f"{x:,.2f}")

# %% [markdown]
# ## 1. CONFIG – Master Settings


# %%
CONFIG = {
    "store_name": "Hong Kong Banjeom – Phnom Penh",
    "currency": "$",
    "random_seed": 42,

    # Menu engineering window (trailing days ending at the selected date)
    "analysis_window_days": 7,
    # Fewer saved days than this in the window means "insufficient data"
    "min_analysis_days": 7,

    # Excluded from the range-based analysis (alcohol + soft drinks)
    "excluded_item_names": [
        "Chamisul Fresh 360ml", "Chum Churum 360ml", "Jinro Is Back 360ml",
        "Makgeolli", "Angkor Beer S 330ml", "Angkor Beer L 640ml",
        "Angkor Draft 250ml", "Angkor Draft 500ml", "Heineken Draft 250ml",
        "Coke 330ml", "Sprite 330ml", "Soda 330ml", "Bonbon 238ml",
        "Ssaekssaek 238ml", "Coolpis 250ml", "Milkis 250ml",
        "Erguotou 100ml", "Erguotou 500ml", "Baojianjiu 125ml",
        "Baojianjiu 520ml", "Luzhou Laojiao 500ml",
    ],
    "soft_drink_names": [
        "Coke 330ml", "Sprite 330ml", "Soda 330ml", "Milkis 250ml",
        "Coolpis 250ml", "Bonbon 238ml", "Ssaekssaek 238ml",
    ],

    # Boost plans
    "max_plans": 3,
    "margin_floor": 0.5,             # post-discount margin kept on a set
    "min_discount_pct": 0.10,
    "discount_pct_step": 5,          # discounts shown in 5% steps
    "price_rounding_step": 0.5,      # discount amounts rounded to 50 cents
    "pairing_max_price": 10,         # general set companions must cost less
    "fried_keywords": ["Sweet and Sour Pork", "Kkanpunggi", "Yurinchi", "Chicken", "Tempura"],
    "topping_category": "Toppings",
    "side_dish_name": "Seafood Dumplings",
    "target_increment": None,        # None = random 1 or 2 on top of the daily baseline
    "enforce_margin_floor": True,

    # POS reconciliation
    "gap_warning_pct": 1.0,
    "gap_critical_pct": 3.0,
    "addon_category": "Toppings",
    "monthly_target": 15000,

    # Receipt name resolution
    "match_auto_accept_score": 0.88,
    "match_min_gap": 0.08,
    "match_price_tolerance": 0.20,

    # Paths
    "catalog_path": None,            # None = built-in DEFAULT_MENU_CATEGORIES
    "history_dir": "data/history",
    "output_dir": "output",
}

QUADRANTS = ["Stars", "Cash Cows", "Puzzles", "Dogs"]
NO_COST_LABEL = "No Cost"

# %% [markdown]
# ## 2. Catalog


# %%
DEFAULT_MENU_CATEGORIES = [
    {
        "name": "Mains",
        "items": [
            {"id": "f1", "name": "Jjajangmyeon", "price": 7, "unit_cost": 1.42},
            {"id": "f2", "name": "Jjamppong", "price": 7, "unit_cost": 2.24},
            {"id": "f3", "name": "Jjamppong Rice", "price": 8, "unit_cost": 2.34},
            {"id": "f4", "name": "White Jjamppong", "price": 7, "unit_cost": 2.13},
            {"id": "f5", "name": "White Jjamppong Rice", "price": 8, "unit_cost": 2.08},
            {"id": "f6", "name": "Stir-fried Jjamppong", "price": 9, "unit_cost": 2.94},
            {"id": "f7", "name": "Spicy Jjajang", "price": 9, "unit_cost": 1.57},
            {"id": "f8", "name": "Spicy Jjamppong", "price": 10, "unit_cost": 2.51},
            {"id": "f9", "name": "Spicy Jjamppong Rice", "price": 12, "unit_cost": 2.61},
            {"id": "f10", "name": "Jjajang Rice", "price": 5, "unit_cost": 1.67},
            {"id": "f11", "name": "Japchae Rice", "price": 10, "unit_cost": 3.35},
            {"id": "f12", "name": "Vegetable Fried Rice", "price": 5, "unit_cost": 1.69},
            {"id": "f13", "name": "Beef Fried Rice", "price": 7, "unit_cost": 2.36},
            {"id": "f14", "name": "Mapo Tofu", "price": 12, "unit_cost": 2.24},
            {"id": "f15", "name": "Mapo Tofu Rice", "price": 9, "unit_cost": 1.72},
            {"id": "f16", "name": "Kkanpunggi", "price": 15, "unit_cost": 2.97},
            {"id": "f17", "name": "Spicy Yurinchi", "price": 15, "unit_cost": 3.71},
            {"id": "f18", "name": "Tray Jjajang", "price": 18, "unit_cost": 4.38},
            {"id": "f19", "name": "Stone Pot Jjajang", "price": 18, "unit_cost": 5.32},
            {"id": "f20", "name": "Seafood Dumplings", "price": 5.5, "unit_cost": 2.42},
        ],
    },
    {
        "name": "Sweet and Sour Pork",
        "items": [
            {"id": "t1", "name": "Sweet and Sour Pork S", "price": 12, "unit_cost": 2.70},
            {"id": "t2", "name": "Sweet and Sour Pork M", "price": 15, "unit_cost": 3.23},
            {"id": "t3", "name": "Sweet and Sour Pork L", "price": 18, "unit_cost": 4.50},
        ],
    },
    {
        "name": "Toppings",
        "items": [
            {"id": "a1", "name": "Topping Hash Brown", "price": 2, "unit_cost": 0.28},
            {"id": "a2", "name": "Topping Fried Egg", "price": 1, "unit_cost": 0.141},
            {"id": "a3", "name": "Topping Cheese Slice", "price": 1, "unit_cost": 0.29},
        ],
    },
    {
        "name": "Beverages",
        "items": [
            {"id": "b1", "name": "Chamisul Fresh 360ml", "price": 5},
            {"id": "b2", "name": "Chum Churum 360ml", "price": 5},
            {"id": "b3", "name": "Jinro Is Back 360ml", "price": 5},
            {"id": "b4", "name": "Makgeolli", "price": 6},
            {"id": "b5", "name": "Angkor Beer S 330ml", "price": 2.5},
            {"id": "b6", "name": "Angkor Beer L 640ml", "price": 4.5},
            {"id": "b7", "name": "Angkor Draft 250ml", "price": 2},
            {"id": "b8", "name": "Angkor Draft 500ml", "price": 3},
            {"id": "b9", "name": "Heineken Draft 250ml", "price": 2.5},
            {"id": "b10", "name": "Coke 330ml", "price": 1},
            {"id": "b11", "name": "Sprite 330ml", "price": 1},
            {"id": "b12", "name": "Soda 330ml", "price": 1},
            {"id": "b13", "name": "Bonbon 238ml", "price": 2},
            {"id": "b14", "name": "Ssaekssaek 238ml", "price": 2},
            {"id": "b15", "name": "Coolpis 250ml", "price": 2},
            {"id": "b16", "name": "Milkis 250ml", "price": 2},
        ],
    },
    {
        "name": "Liquors",
        "items": [
            {"id": "l1", "name": "Erguotou 100ml", "price": 4},
            {"id": "l2", "name": "Erguotou 500ml", "price": 8},
            {"id": "l3", "name": "Baojianjiu 125ml", "price": 6},
            {"id": "l4", "name": "Baojianjiu 520ml", "price": 18},
            {"id": "l5", "name": "Luzhou Laojiao 500ml", "price": 60},
        ],
    },
]

CATALOG_COLUMNS = ["item_id", "item_name", "category", "sell_price", "cost_per_unit"]
REQUIRED_CATALOG_COLUMNS = ["item_name", "sell_price"]

DEFAULT_CATALOG_COLUMN_MAP = {
    "ID": "item_id",
    "Item ID": "item_id",
    "Item": "item_name",
    "Item Name": "item_name",
    "Menu Item": "item_name",
    "Name": "item_name",
    "Category": "category",
    "Menu Category": "category",
    "Price": "sell_price",
    "Sell Price": "sell_price",
    "Cost": "cost_per_unit",
    "Unit Cost": "cost_per_unit",
    "Recipe Cost": "cost_per_unit",
}

CATEGORY_NORMALIZATION_MAP = {
    "main": "Mains",
    "mains": "Mains",
    "main dishes": "Mains",
    "main dish": "Mains",
    "noodles": "Mains",
    "tangsuyuk": "Sweet and Sour Pork",
    "sweet and sour pork": "Sweet and Sour Pork",
    "topping": "Toppings",
    "toppings": "Toppings",
    "add-ons": "Toppings",
    "add-on": "Toppings",
    "addons": "Toppings",
    "beverage": "Beverages",
    "beverages": "Beverages",
    "drink": "Beverages",
    "drinks": "Beverages",
    "liquor": "Liquors",
    "liquors": "Liquors",
    "spirits": "Liquors",
}


def normalize_category_name(category: str) -> str:
    """Normalize category names to standard format with typo tolerance."""
    if pd.isna(category) or not str(category).strip():
        return "Uncategorized"

    clean = str(category).strip().lower()
    if clean in CATEGORY_NORMALIZATION_MAP:
        return CATEGORY_NORMALIZATION_MAP[clean]

    # Typos (e.g. "toppngs" -> "Toppings")
    matches = get_close_matches(clean, CATEGORY_NORMALIZATION_MAP.keys(), n=1, cutoff=0.8)
    if matches:
        return CATEGORY_NORMALIZATION_MAP[matches[0]]

    return str(category).strip().title()


def build_catalog(categories: list = None) -> pd.DataFrame:
    """Flatten a list of {name, items} categories into a catalog table."""
    if categories is None:
        categories = DEFAULT_MENU_CATEGORIES
    rows = []
    for cat in categories:
        for item in cat.get("items", []):
            unit_cost = item.get("unit_cost")
            rows.append({
                "item_id": str(item["id"]),
                "item_name": item["name"],
                "category": cat["name"],
                "sell_price": float(item["price"]),
                "cost_per_unit": np.nan if unit_cost is None else float(unit_cost),
            })
    return pd.DataFrame(rows, columns=CATALOG_COLUMNS)


def _read_any_table(path: str) -> pd.DataFrame:
    """Read CSV/Excel with robust encoding handling."""
    if path.lower().endswith((".xlsx", ".xls")):
        return pd.read_excel(path)
    try:
        return pd.read_csv(path, encoding="utf-8-sig")
    except UnicodeDecodeError:
        print(f"⚠️  UTF-8 decode failed, trying latin-1 encoding for {path}")
        return pd.read_csv(path, encoding="latin-1")


def load_catalog(path: str, column_map: dict = None) -> pd.DataFrame:
    """
    Load a menu catalog from CSV/Excel.

    Unit cost is optional per row: blank cost stays NaN and the item is
    reported as a no-cost item by the analysis instead of being dropped.
    """
    raw = _read_any_table(path)
    mapping = DEFAULT_CATALOG_COLUMN_MAP.copy()
    if column_map:
        mapping.update(column_map)
    df = raw.rename(columns={k: v for k, v in mapping.items() if k in raw.columns})

    missing = [c for c in REQUIRED_CATALOG_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(
            f"❌ CRITICAL: Catalog file missing required columns: {missing}\n"
            f"Available columns: {list(raw.columns)}\n"
            f"Please check column names or add them to DEFAULT_CATALOG_COLUMN_MAP"
        )

    df = df.copy()
    df["item_name"] = df["item_name"].astype(str).str.strip()
    if "item_id" not in df.columns:
        df["item_id"] = [f"i{n}" for n in range(1, len(df) + 1)]
    df["item_id"] = df["item_id"].astype(str).str.strip()
    if "category" not in df.columns:
        df["category"] = "Uncategorized"
    df["category"] = df["category"].apply(normalize_category_name)
    if "cost_per_unit" not in df.columns:
        df["cost_per_unit"] = np.nan

    for col in ["sell_price", "cost_per_unit"]:
        as_text = (
            df[col]
            .astype(str)
            .str.replace(r"[£$€¥,\s]|USD|GBP|EUR", "", regex=True)
            .replace({"": np.nan, "nan": np.nan, "None": np.nan})
        )
        df[col] = pd.to_numeric(as_text, errors="coerce")

    bad_price = df["sell_price"].isna() | (df["sell_price"] < 0)
    if bad_price.any():
        raise ValueError(
            f"❌ CRITICAL: {int(bad_price.sum())} catalog rows have a missing or negative price: "
            f"{df.loc[bad_price, 'item_name'].tolist()[:5]}"
        )
    negative_cost = df["cost_per_unit"] < 0
    if negative_cost.any():
        raise ValueError(
            f"❌ CRITICAL: {int(negative_cost.sum())} catalog rows have a negative unit cost: "
            f"{df.loc[negative_cost, 'item_name'].tolist()[:5]}"
        )

    duplicates = df[df.duplicated(subset=["item_id"], keep=False)]
    if len(duplicates) > 0:
        raise ValueError(
            f"❌ CRITICAL: duplicate item ids found in catalog: "
            f"{list(duplicates['item_id'].unique())[:5]}"
        )

    no_cost = int(df["cost_per_unit"].isna().sum())
    if no_cost > 0:
        print(f"ℹ️  {no_cost} catalog items have no unit cost (excluded from profitability classification)")

    return df[CATALOG_COLUMNS].reset_index(drop=True)


# %% [markdown]
# ## 3. Shared helpers (rounding, clamping, name normalization)


# %%
def round_half_up(value: float, decimals: int = 0) -> float:
    """Round halves towards +inf, the way POS receipts and spreadsheets do."""
    factor = 10 ** decimals
    return math.floor(value * factor + 0.5) / factor


def round_to_step(value: float, step: float) -> float:
    """Round to the nearest multiple of `step` (0.5 -> nearest 50 cents)."""
    return math.floor(value / step + 0.5) * step


def clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


def normalize_item_name(name: str) -> str:
    """Lowercase and keep letters/digits only (Hangul included)."""
    if name is None or (not isinstance(name, str) and pd.isna(name)):
        return ""
    return "".join(ch for ch in str(name).lower() if ch.isalnum())


def _excluded_ids(catalog: pd.DataFrame, excluded_names) -> set:
    """Item ids (and raw keys) that the range analysis must never aggregate."""
    wanted = {normalize_item_name(n) for n in (excluded_names or [])}
    wanted.discard("")
    if not wanted:
        return set()
    matched = catalog.loc[
        catalog["item_name"].map(normalize_item_name).isin(wanted), "item_id"
    ]
    return set(matched.astype(str)) | set(excluded_names)


# %% [markdown]
# ## 4. Aggregation over a window


# %%
def _empty_debug_stats(dates_count: int = 0) -> Dict[str, int]:
    return {
        "dates_count": dates_count,
        "loaded_count": 0,
        "categories_count_total": 0,
        "items_count_total": 0,
        "qty_positive_items_count": 0,
        "aggregated_ids_count": 0,
        "excluded_entries_count": 0,
        "dropped_uncataloged_ids": 0,
    }


def aggregate_quantities(history,
                         dates: List[str],
                         catalog: pd.DataFrame,
                         excluded_names: list = None) -> tuple[Dict[str, int], Dict[str, int]]:
    """
    Sum per-item quantities over the given dates.

    Returns:
        aggregated: item_id -> total quantity (only totals > 0, never an
            excluded item, not even as zero)
        debug_stats: audit counters for the scan
    """
    stats = _empty_debug_stats(len(dates))
    excluded = _excluded_ids(catalog, excluded_names)
    category_of = dict(zip(catalog["item_id"].astype(str), catalog["category"]))
    aggregated: Dict[str, int] = {}

    for date in dates:
        record = history.read(date)
        if record is None:
            continue
        stats["loaded_count"] += 1
        quantities = record.item_quantities or {}
        stats["items_count_total"] += len(quantities)
        stats["categories_count_total"] += len(
            {category_of[str(i)] for i in quantities if str(i) in category_of}
        )
        for item_id, qty in quantities.items():
            item_id = str(item_id)
            if item_id in excluded:
                stats["excluded_entries_count"] += 1
                continue
            if qty is None or qty <= 0:
                continue
            stats["qty_positive_items_count"] += 1
            aggregated[item_id] = aggregated.get(item_id, 0) + qty

    stats["aggregated_ids_count"] = len(aggregated)
    return aggregated, stats


# %% [markdown]
# ## 5. Item metrics + quadrant classification


# %%
def build_item_metrics(aggregated: Dict[str, int],
                       catalog: pd.DataFrame) -> tuple[pd.DataFrame, int]:
    """
    Window metrics for every aggregated item found in the catalog.

    Unknown unit cost propagates as NaN into cogs, contribution margin and
    gross profit. Returns the table and the number of aggregated ids that
    were not in the catalog (dropped).
    """
    sales = pd.DataFrame(
        {"item_id": list(aggregated.keys()), "qty_window": list(aggregated.values())}
    )
    catalog = catalog[CATALOG_COLUMNS].copy()
    catalog["item_id"] = catalog["item_id"].astype(str)

    df = catalog.merge(sales, on="item_id", how="inner")
    dropped = len(sales) - len(df)

    df["qty_window"] = df["qty_window"].astype(int)
    df["revenue"] = df["sell_price"] * df["qty_window"]
    df["cogs"] = df["cost_per_unit"] * df["qty_window"]
    df["contribution_margin"] = df["sell_price"] - df["cost_per_unit"]
    df["gross_profit"] = df["revenue"] - df["cogs"]
    return df.reset_index(drop=True), dropped


def _high_low(is_high: pd.Series, costed: pd.Series) -> pd.Series:
    # object dtype so no-cost rows hold None rather than a string NaN
    labels = [("High" if high else "Low") if has_cost else None for high, has_cost in zip(is_high, costed)]
    return pd.Series(labels, index=is_high.index, dtype=object)


def classify_menu_items(metrics_df: pd.DataFrame) -> tuple[pd.DataFrame, float, float]:
    """
    Assign popularity, profitability and quadrant to each costed item.

    Thresholds are the plain averages of quantity and contribution margin
    over costed items only; ties land on the High side.
    """
    df = metrics_df.copy()
    costed = df["cost_per_unit"].notna()

    if costed.any():
        avg_qty = float(df.loc[costed, "qty_window"].mean())
        avg_cm = float(df.loc[costed, "contribution_margin"].mean())
    else:
        avg_qty, avg_cm = 0.0, 0.0

    high_pop = df["qty_window"] >= avg_qty
    high_prof = df["contribution_margin"] >= avg_cm

    df["popularity"] = _high_low(high_pop, costed)
    df["profitability"] = _high_low(high_prof, costed)
    df["quadrant"] = np.select(
        [
            ~costed,
            high_pop & high_prof,
            high_pop & ~high_prof,
            ~high_pop & high_prof,
        ],
        [NO_COST_LABEL, "Stars", "Cash Cows", "Puzzles"],
        default="Dogs",
    )
    return df, avg_qty, avg_cm


@dataclass
class MenuEngineeringResult:
    """
    Output of one menu engineering run.

    Attributes:
        items_df: Every aggregated catalog item with window metrics and its
            quadrant ("Stars", "Cash Cows", "Puzzles", "Dogs" or "No Cost")
        popularity_threshold: Average quantity over costed items
        profitability_threshold: Average contribution margin over costed items
        analyzed_dates_count: Distinct saved dates found in the window
        insufficient_data: True when the window had too few saved dates to analyse
        debug_stats: Scan counters (dates, records, categories, entries, ids)
    """
    items_df: pd.DataFrame
    popularity_threshold: float = 0.0
    profitability_threshold: float = 0.0
    analyzed_dates_count: int = 0
    insufficient_data: bool = False
    window_start: Optional[str] = None
    window_end: Optional[str] = None
    debug_stats: Dict[str, int] = field(default_factory=dict)

    def quadrant(self, name: str) -> pd.DataFrame:
        return self.items_df[self.items_df["quadrant"] == name].reset_index(drop=True)

    @property
    def stars(self) -> pd.DataFrame:
        return self.quadrant("Stars")

    @property
    def cash_cows(self) -> pd.DataFrame:
        return self.quadrant("Cash Cows")

    @property
    def puzzles(self) -> pd.DataFrame:
        return self.quadrant("Puzzles")

    @property
    def dogs(self) -> pd.DataFrame:
        return self.quadrant("Dogs")

    @property
    def no_cost_items(self) -> pd.DataFrame:
        return self.quadrant(NO_COST_LABEL)

    @property
    def has_classification(self) -> bool:
        return not self.insufficient_data and (self.items_df["quadrant"] != NO_COST_LABEL).any()


RESULT_COLUMNS = CATALOG_COLUMNS + [
    "qty_window", "revenue", "cogs", "contribution_margin", "gross_profit",
    "popularity", "profitability", "quadrant",
]


def _empty_items_df() -> pd.DataFrame:
    return pd.DataFrame(columns=RESULT_COLUMNS)


def _run_menu_engineering(history,
                          dates: List[str],
                          catalog: pd.DataFrame,
                          excluded_names: list = None,
                          window_start: str = None,
                          window_end: str = None) -> MenuEngineeringResult:
    aggregated, stats = aggregate_quantities(history, dates, catalog, excluded_names)
    metrics_df, dropped = build_item_metrics(aggregated, catalog)
    stats["dropped_uncataloged_ids"] = dropped
    if dropped > 0:
        print(f"⚠️  WARNING: {dropped} sold item ids are not in the catalog (dropped from analysis)")

    if metrics_df.empty:
        return MenuEngineeringResult(
            items_df=_empty_items_df(),
            analyzed_dates_count=len(dates),
            window_start=window_start,
            window_end=window_end,
            debug_stats=stats,
        )

    classified, avg_qty, avg_cm = classify_menu_items(metrics_df)
    return MenuEngineeringResult(
        items_df=classified[RESULT_COLUMNS],
        popularity_threshold=avg_qty,
        profitability_threshold=avg_cm,
        analyzed_dates_count=len(dates),
        window_start=window_start,
        window_end=window_end,
        debug_stats=stats,
    )


def classify(history,
             start,
             end,
             catalog: pd.DataFrame = None,
             config: dict = CONFIG) -> MenuEngineeringResult:
    """
    Menu engineering over an inclusive date window.

    Excluded items (alcohol, soft drinks) are skipped while aggregating.
    With fewer than `min_analysis_days` saved dates the aggregation is not
    run at all: the result has empty collections, zero thresholds, the true
    date count and `insufficient_data=True`.
    """
    if catalog is None:
        catalog = build_catalog()
    start, end = normalize_date(start), normalize_date(end)
    dates = history.list_dates(start, end)

    if len(dates) < config["min_analysis_days"]:
        return MenuEngineeringResult(
            items_df=_empty_items_df(),
            analyzed_dates_count=len(dates),
            insufficient_data=True,
            window_start=start,
            window_end=end,
            debug_stats=_empty_debug_stats(len(dates)),
        )

    return _run_menu_engineering(
        history, dates, catalog,
        excluded_names=config.get("excluded_item_names"),
        window_start=start,
        window_end=end,
    )


def classify_month(history,
                   year_month: str,
                   catalog: pd.DataFrame = None) -> MenuEngineeringResult:
    """Menu engineering over every saved day of a calendar month (no exclusions, no minimum)."""
    if catalog is None:
        catalog = build_catalog()
    period = pd.Period(year_month, freq="M")
    start = period.start_time.strftime("%Y-%m-%d")
    end = period.end_time.strftime("%Y-%m-%d")
    dates = history.list_dates(start, end)
    return _run_menu_engineering(history, dates, catalog, None, start, end)


def window_for(end_date, days: int) -> tuple[str, str]:
    """Trailing window of `days` calendar days ending on `end_date`."""
    end = pd.Timestamp(normalize_date(end_date))
    start = end - pd.Timedelta(days=days - 1)
    return start.strftime("%Y-%m-%d"), end.strftime("%Y-%m-%d")


# %% [markdown]
# ## 6. Ranked quadrant summaries


# %%
def _sorted(df: pd.DataFrame, by: list, ascending: list) -> pd.DataFrame:
    # item_id as the last key keeps equal rows in a stable order
    return df.sort_values(by + ["item_id"], ascending=ascending + [True], kind="mergesort")


def ranked_stars(result: MenuEngineeringResult) -> pd.DataFrame:
    return _sorted(result.stars, ["revenue"], [False])


def ranked_cash_cows(result: MenuEngineeringResult) -> pd.DataFrame:
    return _sorted(result.cash_cows, ["qty_window"], [False])


def ranked_puzzles(result: MenuEngineeringResult) -> pd.DataFrame:
    return _sorted(result.puzzles, ["contribution_margin", "revenue"], [False, False])


def ranked_dogs(result: MenuEngineeringResult) -> pd.DataFrame:
    return _sorted(result.dogs, ["revenue"], [True])


def format_ranked_item(row, total_revenue: float, config: dict = CONFIG) -> str:
    currency = config["currency"]
    if pd.notna(row["cost_per_unit"]):
        unit_cost = f"{currency}{row['cost_per_unit']:.2f}"
        cost_rate = f"{row['cost_per_unit'] / row['sell_price'] * 100:.1f}%" if row["sell_price"] > 0 else "N/A"
        gp = f"{currency}{row['gross_profit']:,.2f}"
    else:
        unit_cost, cost_rate, gp = "N/A", "N/A", "N/A"
    share = f"{row['revenue'] / total_revenue * 100:.1f}%" if total_revenue > 0 else "N/A"
    return (
        f"{row['item_name']}: cost {unit_cost} ({cost_rate}) / sold {int(row['qty_window'])} / "
        f"revenue {currency}{row['revenue']:,.2f} / profit {gp} / revenue share {share}"
    )


def rank_quadrants(result: MenuEngineeringResult, config: dict = CONFIG, top_n: int = 3) -> dict:
    total_revenue = float(result.items_df["revenue"].sum()) if not result.items_df.empty else 0.0
    ranked = {
        "stars": ranked_stars(result).head(top_n),
        "cash_cows": ranked_cash_cows(result).head(top_n),
        "puzzles": ranked_puzzles(result).head(top_n),
        "dogs": ranked_dogs(result).head(top_n),
    }
    summary = {
        f"{key}_lines": [format_ranked_item(row, total_revenue, config) for _, row in df.iterrows()]
        for key, df in ranked.items()
    }
    summary.update(ranked)
    summary["no_cost_items"] = result.no_cost_items["item_name"].tolist()
    summary["popularity_threshold"] = f"{result.popularity_threshold:.1f}"
    summary["profitability_threshold"] = f"{result.profitability_threshold:.2f}"
    summary["total_revenue"] = total_revenue
    return summary


# %% [markdown]
# ## 7. Daily POS reconciliation + monthly / period statistics


# %%
STATUS_ICONS = {"ok": "✅", "warning": "🟡", "critical": "🔴"}


def calculate_daily_results(record,
                            catalog: pd.DataFrame = None,
                            config: dict = CONFIG) -> dict:
    """
    Reconcile the per-item tally of a day against its POS total.

    gap = POS - tally; status is "ok" up to gap_warning_pct of POS,
    "warning" up to gap_critical_pct, "critical" beyond.
    """
    if catalog is None:
        catalog = build_catalog()
    price_of = dict(zip(catalog["item_id"].astype(str), catalog["sell_price"]))
    category_of = dict(zip(catalog["item_id"].astype(str), catalog["category"]))

    calc_sales = 0.0
    addon_units = 0
    unknown = []
    for item_id, qty in (record.item_quantities or {}).items():
        item_id = str(item_id)
        qty = qty or 0
        if item_id not in price_of:
            if qty > 0:
                unknown.append(item_id)
            continue
        calc_sales += price_of[item_id] * qty
        if category_of[item_id] == config["addon_category"]:
            addon_units += qty
    if unknown:
        print(f"⚠️  WARNING: {len(unknown)} items on {record.date} are not in the catalog: {unknown[:5]}")

    pos_sales = float(record.pos_sales or 0)
    gap = pos_sales - calc_sales
    gap_rate = (gap / pos_sales) * 100 if pos_sales > 0 else 0.0

    abs_rate = abs(gap_rate)
    if abs_rate > config["gap_critical_pct"]:
        status = "critical"
    elif abs_rate > config["gap_warning_pct"]:
        status = "warning"
    else:
        status = "ok"

    orders = record.orders or 0
    visits = record.visit_count or 0
    return {
        "date": record.date,
        "calc_sales": round_half_up(calc_sales, 2),
        "pos_sales": pos_sales,
        "gap": round_half_up(gap, 2),
        "gap_rate": round_half_up(gap_rate, 2),
        "status": status,
        "status_icon": STATUS_ICONS[status],
        "aov": round_half_up(calc_sales / orders, 2) if orders > 0 else 0.0,
        "conversion_rate": round_half_up(orders / visits * 100, 1) if visits > 0 else 0.0,
        "addon_per_order": round_half_up(addon_units / orders, 1) if orders > 0 else 0.0,
    }


def monthly_summary(history, year_month: str, monthly_target: float = None,
                    config: dict = CONFIG) -> dict:
    """Month-to-date total, saved days, daily average and target achievement."""
    if monthly_target is None:
        monthly_target = config["monthly_target"]
    period = pd.Period(year_month, freq="M")
    dates = history.list_dates(period.start_time, period.end_time)

    total = 0.0
    for d in dates:
        record = history.read(d)
        if record is not None:
            total += float(record.total_sales or 0)

    return {
        "year_month": str(period),
        "total": total,
        "days_with_data": len(dates),
        "dates": dates,
        "daily_average": total / len(dates) if dates else 0.0,
        "monthly_target": monthly_target,
        "achievement_rate": (total / monthly_target) * 100 if monthly_target and monthly_target > 0 else 0.0,
    }


def period_summary(history, start, end) -> dict:
    """Sales, orders and visitors per saved day between two dates."""
    rows = []
    for d in history.list_dates(start, end):
        record = history.read(d)
        if record is None:
            continue
        rows.append({
            "date": d,
            "total_sales": float(record.pos_sales or 0),
            "orders": int(record.orders or 0),
            "guests": int(record.visit_count or 0),
        })
    daily_df = pd.DataFrame(rows, columns=["date", "total_sales", "orders", "guests"])
    return {
        "total_sales": float(daily_df["total_sales"].sum()),
        "total_orders": int(daily_df["orders"].sum()),
        "total_visitors": int(daily_df["guests"].sum()),
        "daily_df": daily_df,
    }


# %% [markdown]
# ## 8. Chart


# %%
QUADRANT_COLORS = {
    "Stars": "#6A994E",
    "Cash Cows": "#2E86AB",
    "Puzzles": "#F18F01",
    "Dogs": "#C73E1D",
}


def save_menu_engineering_chart(result: MenuEngineeringResult, path: str,
                                config: dict = CONFIG) -> Optional[str]:
    """Quantity vs contribution margin scatter with threshold lines. Returns the path or None."""
    costed = result.items_df[result.items_df["quadrant"].isin(QUADRANTS)]
    if costed.empty:
        return None

    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    fig, ax = plt.subplots(figsize=(9, 7))
    for quadrant in QUADRANTS:
        part = costed[costed["quadrant"] == quadrant]
        if part.empty:
            continue
        ax.scatter(part["qty_window"], part["contribution_margin"],
                   label=quadrant, color=QUADRANT_COLORS[quadrant], s=60, alpha=0.8)
        for _, row in part.iterrows():
            ax.annotate(row["item_name"], (row["qty_window"], row["contribution_margin"]),
                        fontsize=7, xytext=(3, 3), textcoords="offset points")

    ax.axvline(result.popularity_threshold, linestyle="--", color="grey")
    ax.axhline(result.profitability_threshold, linestyle="--", color="grey")
    ax.set_xlabel("Units sold in window")
    ax.set_ylabel(f"Contribution margin ({config['currency']})")
    ax.set_title(f"Menu Engineering – {result.window_start} to {result.window_end}")
    ax.legend(loc="best")
    plt.tight_layout()
    fig.savefig(path, dpi=150)
    plt.close(fig)
    return path


# %% [markdown]
# ## 9. Export block for the report writer


# %%
def to_markdown_table(df: pd.DataFrame, cols: list, index: bool = False) -> str:
    if df.empty:
        return pd.DataFrame(columns=cols).to_markdown(index=index)
    return df[cols].to_markdown(index=index, floatfmt=".2f")


def build_coaching_export_block(record,
                                daily_results: Optional[dict],
                                result: MenuEngineeringResult,
                                plans: list,
                                config: dict = CONFIG,
                                month_stats: dict = None) -> str:
    """Structured, prose-free data block handed to the coaching report writer."""
    currency = config["currency"]
    lines = [f"STORE: {config['store_name']}"]

    if daily_results is not None:
        lines += [
            "",
            "TODAY:",
            f"- Date: {daily_results['date']}",
            f"- Menu tally: {currency}{daily_results['calc_sales']:,.2f}",
            f"- POS total: {currency}{daily_results['pos_sales']:,.2f} "
            f"(gap {currency}{daily_results['gap']:,.2f} / {daily_results['gap_rate']:.1f}% {daily_results['status_icon']})",
            f"- AOV: {currency}{daily_results['aov']:,.2f}, conversion {daily_results['conversion_rate']:.1f}%, "
            f"toppings per order {daily_results['addon_per_order']:.1f}",
        ]
        if record is not None:
            lines += [
                f"- Orders: {record.orders}, visitors: {record.visit_count}",
                f"- Note: {record.note or 'none'}",
            ]

    if month_stats is not None:
        remaining = month_stats["monthly_target"] - month_stats["total"]
        lines += [
            "",
            "MONTH_TO_DATE:",
            f"- Total: {currency}{month_stats['total']:,.2f} over {month_stats['days_with_data']} days",
            f"- Target: {currency}{month_stats['monthly_target']:,.2f} "
            f"({month_stats['achievement_rate']:.1f}% reached, {currency}{remaining:,.2f} remaining)",
        ]

    lines += ["", f"MENU_ENGINEERING ({result.window_start} to {result.window_end}):"]
    if result.insufficient_data:
        lines.append(
            f"- Insufficient data: {result.analyzed_dates_count} saved days in window "
            f"(minimum {config['min_analysis_days']})"
        )
    elif not result.has_classification:
        lines.append(f"- No costed items sold across {result.analyzed_dates_count} saved days")
    else:
        cols = ["item_name", "qty_window", "revenue", "contribution_margin", "gross_profit"]
        lines += [
            f"- Popularity threshold: {result.popularity_threshold:.1f} units",
            f"- Profitability threshold: {currency}{result.profitability_threshold:.2f} CM",
            f"- Days analysed: {result.analyzed_dates_count}",
            "",
            "STARS (markdown):", to_markdown_table(ranked_stars(result), cols),
            "",
            "CASH_COWS (markdown):", to_markdown_table(ranked_cash_cows(result), cols),
            "",
            "PUZZLES (markdown):", to_markdown_table(ranked_puzzles(result), cols),
            "",
            "DOGS (markdown):", to_markdown_table(ranked_dogs(result), cols),
            "",
            "ACTION_HINTS:",
        ]
        for _, row in ranked_puzzles(result).head(3).iterrows():
            lines.append(f"- Boost {row['item_name']}: promotion or set menu to raise awareness")
        for _, row in ranked_cash_cows(result).head(3).iterrows():
            lines.append(f"- Margin {row['item_name']}: review cost or a price increase")
        for _, row in ranked_dogs(result).head(3).iterrows():
            lines.append(f"- Review {row['item_name']}: retire, rework recipe or change ingredients")

    no_cost = result.no_cost_items["item_name"].tolist()
    lines += ["", "NO_COST_ITEMS:", f"- {', '.join(no_cost) if no_cost else 'none'}"]

    lines += ["", "BOOST_PLANS:"]
    if not plans:
        lines.append("- (none)")
    for n, plan in enumerate(plans, 1):
        lines += [
            f"{n}. [{plan.plan_type}] {plan.set_name}",
            f"   - Composition: {plan.set_composition}",
            f"   - Discount: {plan.discount}",
            f"   - Daily target: {plan.daily_target_qty} ({plan.daily_target_reason})",
            f"   - Staff: {plan.staff_comment}",
        ]

    return "\n".join(lines).strip()


# %% [markdown]
# ## 10. Full run


# %%
def run_full_analysis(history,
                      end_date,
                      catalog: pd.DataFrame = None,
                      config: dict = CONFIG,
                      rng=None) -> dict:
    """
    Run the daily analysis for `end_date` and return every result object.

    Args:
        history: Store with list_dates(start, end) and read(date)
        end_date: Selected day; the menu engineering window ends here
        catalog: Catalog table (defaults to config["catalog_path"] or the built-in menu)
        config: Configuration dictionary (defaults to module CONFIG)
        rng: numpy Generator for plan variability (defaults to one seeded from config)

    Returns:
        A dictionary with keys: catalog, menu_engineering, ranked,
        promotion_plans, record, daily_results, monthly_summary,
        export_block, config
    """
    import promotions_module

    if catalog is None:
        catalog = load_catalog(config["catalog_path"]) if config.get("catalog_path") else build_catalog()

    end_date = normalize_date(end_date)
    start, end = window_for(end_date, config["analysis_window_days"])
    result = classify(history, start, end, catalog, config)

    if result.insufficient_data:
        print(
            f"⚠️  WARNING: Only {result.analyzed_dates_count} saved days between {start} and {end} "
            f"(need {config['min_analysis_days']}) - menu engineering skipped"
        )
        plans = []
    else:
        plans = promotions_module.plan_promotions(result, catalog, config, rng=rng)

    record = history.read(end_date)
    daily_results = calculate_daily_results(record, catalog, config) if record is not None else None
    target = record.monthly_target if record is not None and record.monthly_target else config["monthly_target"]
    month_stats = monthly_summary(history, end_date[:7], target, config)

    export_block = build_coaching_export_block(
        record, daily_results, result, plans,
        config=config,
        month_stats=month_stats,
    )

    return {
        "catalog_df": catalog,
        "menu_engineering": result,
        "ranked": rank_quadrants(result, config),
        "promotion_plans": plans,
        "record": record,
        "daily_results": daily_results,
        "monthly_summary": month_stats,
        "export_block": export_block,
        "config": config,
    }


if __name__ == "__main__":
    # Latest saved day in CONFIG["history_dir"]; outputs go to CONFIG["output_dir"]
    import json
    from dataclasses import asdict

    from history_store import JsonHistoryStore

    store = JsonHistoryStore(CONFIG["history_dir"], create=False)
    all_dates = store.list_dates("1900-01-01", "2999-12-31")
    if not all_dates:
        raise SystemExit(f"No saved days in {CONFIG['history_dir']}")

    results = run_full_analysis(store, all_dates[-1])
    out_dir = CONFIG["output_dir"]
    os.makedirs(out_dir, exist_ok=True)

    results["menu_engineering"].items_df.to_csv(os.path.join(out_dir, "menu_engineering.csv"), index=False)
    with open(os.path.join(out_dir, "promotion_plans.json"), "w", encoding="utf-8") as f:
        json.dump([asdict(p) for p in results["promotion_plans"]], f, indent=2, ensure_ascii=False)
    with open(os.path.join(out_dir, "export_block.txt"), "w", encoding="utf-8") as f:
        f.write(results["export_block"])
    save_menu_engineering_chart(results["menu_engineering"], os.path.join(out_dir, "menu_engineering.png"))

    print(f"Wrote analysis outputs to '{out_dir}/'")
