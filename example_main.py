import os
import json
from dataclasses import asdict

import menu_engine as engine
from generate_test_data import SalesHistoryGenerator
from history_store import InMemoryHistoryStore


def main():
    """Run the sales coach on a synthetic month and save outputs."""

    # Synthetic history (swap for JsonHistoryStore(engine.CONFIG["history_dir"]) with real data)
    records = SalesHistoryGenerator(seed=engine.CONFIG["random_seed"]).generate_history(days=30)
    history = InMemoryHistoryStore(records)

    results = engine.run_full_analysis(history, records[-1].date, config=engine.CONFIG)

    print("Daily results:")
    print(results["daily_results"])

    print("\nMenu engineering (top 5 by revenue):")
    items_df = results["menu_engineering"].items_df
    print(
        items_df.sort_values("revenue", ascending=False)[["item_name", "quadrant", "qty_window", "revenue", "gross_profit"]]
        .head(5)
        .to_string(index=False)
    )

    out_dir = engine.CONFIG["output_dir"]
    os.makedirs(out_dir, exist_ok=True)

    results["catalog_df"].to_csv(os.path.join(out_dir, "catalog.csv"), index=False)
    items_df.to_csv(os.path.join(out_dir, "menu_engineering.csv"), index=False)
    print(f"\nDebug stats: {results['menu_engineering'].debug_stats}")

    with open(os.path.join(out_dir, "promotion_plans.json"), "w", encoding="utf-8") as f:
        json.dump([asdict(p) for p in results["promotion_plans"]], f, indent=2, ensure_ascii=False)

    with open(os.path.join(out_dir, "monthly_summary.json"), "w", encoding="utf-8") as f:
        json.dump(results["monthly_summary"], f, indent=2)

    with open(os.path.join(out_dir, "export_block.txt"), "w", encoding="utf-8") as f:
        f.write(results["export_block"])

    chart_path = engine.save_menu_engineering_chart(
        results["menu_engineering"], os.path.join(out_dir, "menu_engineering.png"), config=engine.CONFIG
    )

    print(f"\nWrote outputs to ./{out_dir}")
    if chart_path:
        print(f"Saved chart image to {chart_path}")


if __name__ == "__main__":
    main()
