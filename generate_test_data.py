"""
Synthetic Sales History Generator
=================================

Generates daily sales records for the built-in catalog (or any catalog) with
configurable:
- Sales volume (low/medium/high)
- Data quality (pristine/typical/corrupted)
- Missing days (to exercise the insufficient-data gate)

Use for:
- Automated testing
- Demo runs of example_main.py / diagnostics.py
- Edge case validation (POS gaps, unknown ids, zero quantities)
"""

from pathlib import Path
from typing import List, Literal

import numpy as np
import pandas as pd

from history_store import DailyRecord, JsonHistoryStore
from menu_engine import CONFIG, build_catalog


class SalesHistoryGenerator:
    """Generate synthetic daily sales records for testing"""

    # Average units per day for the whole menu
    DAILY_UNITS = {"low": 40, "medium": 120, "high": 350}

    # Share of units going to each category
    CATEGORY_WEIGHTS = {
        "Mains": 0.55,
        "Sweet and Sour Pork": 0.12,
        "Toppings": 0.08,
        "Beverages": 0.20,
        "Liquors": 0.05,
    }

    def __init__(self, seed: int = 42):
        """Initialize with a seeded generator for reproducibility"""
        self.rng = np.random.default_rng(seed)

    def _item_weights(self, catalog: pd.DataFrame) -> np.ndarray:
        # Pareto-ish: a few items per category carry most of the volume
        weights = np.zeros(len(catalog))
        for cat, group in catalog.groupby("category"):
            share = self.CATEGORY_WEIGHTS.get(cat, 0.05)
            skew = self.rng.pareto(1.5, size=len(group)) + 0.1
            weights[group.index.to_numpy()] = share * skew / skew.sum()
        return weights / weights.sum()

    def generate_history(
        self,
        catalog: pd.DataFrame = None,
        start_date: str = "2025-01-01",
        days: int = 30,
        volume: Literal["low", "medium", "high"] = "medium",
        quality: Literal["pristine", "typical", "corrupted"] = "pristine",
        skip_days: List[int] = None,
    ) -> List[DailyRecord]:
        """
        Generate one DailyRecord per day.

        Args:
            catalog: Catalog to sell from (defaults to the built-in menu)
            start_date: First day
            days: Number of calendar days
            volume: low (~40 units/day), medium (~120), high (~350)
            quality: pristine (POS == tally), typical (small POS gaps, zero
                entries), corrupted (large gaps, unknown item ids)
            skip_days: Day offsets with no saved record

        Returns:
            List of DailyRecord, oldest first
        """
        if catalog is None:
            catalog = build_catalog()
        catalog = catalog.reset_index(drop=True)
        skip = set(skip_days or [])
        weights = self._item_weights(catalog)
        prices = catalog["sell_price"].to_numpy()
        ids = catalog["item_id"].astype(str).tolist()
        addon_mask = (catalog["category"] == CONFIG["addon_category"]).to_numpy()

        records = []
        for offset, day in enumerate(pd.date_range(start_date, periods=days, freq="D")):
            if offset in skip:
                continue

            # Weekends sell ~30% more
            mean_units = self.DAILY_UNITS[volume] * (1.3 if day.dayofweek >= 5 else 1.0)
            units = max(1, int(self.rng.poisson(mean_units)))
            qty = self.rng.multinomial(units, weights)

            tally = float((qty * prices).sum())
            orders = max(1, int(round((units - qty[addon_mask].sum()) / 1.8)))
            visits = int(orders * self.rng.uniform(1.1, 1.6))

            quantities = {iid: int(q) for iid, q in zip(ids, qty) if q > 0}
            pos_sales = tally

            if quality == "typical":
                pos_sales = tally * (1 + self.rng.normal(0, 0.01))
                if len(ids) > 0:
                    quantities.setdefault(ids[int(self.rng.integers(0, len(ids)))], 0)
            elif quality == "corrupted":
                pos_sales = tally * (1 + self.rng.normal(0, 0.06))
                quantities[f"unknown_{offset}"] = int(self.rng.integers(1, 5))

            records.append(DailyRecord(
                date=day.strftime("%Y-%m-%d"),
                item_quantities=quantities,
                pos_sales=round(pos_sales, 2),
                orders=orders,
                visit_count=visits,
                monthly_target=float(CONFIG["monthly_target"]),
            ))
        return records

    def generate_complete_dataset(
        self,
        output_dir: str,
        start_date: str = "2025-01-01",
        days: int = 30,
        volume: Literal["low", "medium", "high"] = "medium",
        quality: Literal["pristine", "typical", "corrupted"] = "pristine",
    ) -> dict:
        """Write catalog.csv plus one JSON file per day under output_dir/history."""
        output_path = Path(output_dir)
        output_path.mkdir(parents=True, exist_ok=True)

        catalog = build_catalog()
        catalog_path = output_path / "catalog.csv"
        catalog.to_csv(catalog_path, index=False)

        store = JsonHistoryStore(str(output_path / "history"))
        records = self.generate_history(catalog, start_date, days, volume, quality)
        for record in records:
            store.save(record)

        return {
            "catalog_path": str(catalog_path),
            "history_dir": str(store.root),
            "days": len(records),
            "first_date": records[0].date if records else None,
            "last_date": records[-1].date if records else None,
            "total_pos_sales": round(sum(r.pos_sales for r in records), 2),
            "quality": quality,
            "volume": volume,
        }


# =============================================================================
# CLI INTERFACE
# =============================================================================

def main():
    """Generate a synthetic history via command line"""
    import argparse

    parser = argparse.ArgumentParser(description="Generate synthetic daily sales history")
    parser.add_argument("--output", "-o", default="data/synthetic", help="Output directory")
    parser.add_argument("--start", default="2025-01-01", help="First day (YYYY-MM-DD)")
    parser.add_argument("--days", type=int, default=30, help="Days of sales data")
    parser.add_argument("--sales-volume", choices=["low", "medium", "high"], default="medium")
    parser.add_argument("--quality", choices=["pristine", "typical", "corrupted"], default="pristine")
    parser.add_argument("--seed", type=int, default=42, help="Random seed")

    args = parser.parse_args()

    generator = SalesHistoryGenerator(seed=args.seed)

    print("\n🏭 Generating synthetic sales history...")
    print(f"   Start: {args.start}")
    print(f"   Days: {args.days}")
    print(f"   Sales Volume: {args.sales_volume}")
    print(f"   Quality: {args.quality}")
    print(f"   Output: {args.output}\n")

    metadata = generator.generate_complete_dataset(
        output_dir=args.output,
        start_date=args.start,
        days=args.days,
        volume=args.sales_volume,
        quality=args.quality,
    )

    print("✅ Dataset generated successfully!\n")
    print("📊 Summary:")
    for key, value in metadata.items():
        print(f"   {key}: {value}")


if __name__ == "__main__":
    main()
