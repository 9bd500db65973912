import os
import traceback

import menu_engine as engine
from generate_test_data import SalesHistoryGenerator
from history_store import InMemoryHistoryStore, JsonHistoryStore


def _fmt_currency(value, currency_symbol="$"):
    try:
        return f"{currency_symbol}{float(value):,.2f}"
    except (TypeError, ValueError):
        return str(value)


def _print_result(results):
    currency = engine.CONFIG.get("currency", "$")

    print("\n-- Topline --")
    daily = results.get("daily_results")
    if daily:
        print(f"Date: {daily['date']}")
        print(f"Menu tally: {_fmt_currency(daily['calc_sales'], currency)}")
        print(f"POS total: {_fmt_currency(daily['pos_sales'], currency)}")
        print(f"Gap: {_fmt_currency(daily['gap'], currency)} ({daily['gap_rate']:.2f}%) {daily['status_icon']}")
        print(f"AOV: {_fmt_currency(daily['aov'], currency)} | conversion {daily['conversion_rate']:.1f}% | "
              f"toppings/order {daily['addon_per_order']:.1f}")
    else:
        print("No saved record for the selected day.")

    month = results.get("monthly_summary") or {}
    if month:
        print(f"Month {month['year_month']}: {_fmt_currency(month['total'], currency)} over "
              f"{month['days_with_data']} days ({month['achievement_rate']:.1f}% of target)")

    print("\n-- Menu Engineering --")
    result = results["menu_engineering"]
    if result.insufficient_data:
        print(f"Insufficient data: {result.analyzed_dates_count} saved days in window")
    else:
        print(f"Window: {result.window_start} to {result.window_end} ({result.analyzed_dates_count} days)")
        print(f"Popularity threshold: {result.popularity_threshold:.1f} | "
              f"profitability threshold: {_fmt_currency(result.profitability_threshold, currency)}")
        ranked = results["ranked"]
        for key, label in [("stars", "Stars"), ("cash_cows", "Cash Cows"), ("puzzles", "Puzzles"), ("dogs", "Dogs")]:
            print(f"{label}:")
            for line in ranked[f"{key}_lines"] or ["(none)"]:
                print(f"  - {line}")
        print(f"No-cost items: {', '.join(ranked['no_cost_items']) or 'none'}")
    print(f"Debug: {result.debug_stats}")

    print("\n-- Boost Plans --")
    plans = results.get("promotion_plans") or []
    if not plans:
        print("None")
    for i, plan in enumerate(plans, 1):
        print(f"{i}. [{plan.plan_type}] {plan.set_name} | {plan.discount} | target {plan.daily_target_qty}")

    print("\n-- Export Block (preview) --")
    block = results.get("export_block") or ""
    print("\n".join(block.splitlines()[:10]) if block else "(empty)")


def run_synthetic_diagnostics():
    print("=== SYNTHETIC ANALYSIS DIAGNOSTICS ===")
    generator = SalesHistoryGenerator(seed=engine.CONFIG["random_seed"])
    records = generator.generate_history(days=30, quality="typical")
    store = InMemoryHistoryStore(records)
    try:
        results = engine.run_full_analysis(store, records[-1].date)
    except Exception as e:
        print("ERROR: Synthetic run failed:", str(e))
        print(traceback.format_exc())
        return
    _print_result(results)


def run_saved_history_diagnostics():
    print("\n=== SAVED HISTORY DIAGNOSTICS ===")
    history_dir = engine.CONFIG["history_dir"]
    if not os.path.isdir(history_dir):
        print(f"{history_dir} not found; run generate_test_data.py or save some days first. Skipping.")
        return

    store = JsonHistoryStore(history_dir, create=False)
    dates = store.list_dates("1900-01-01", "2999-12-31")
    if not dates:
        print(f"{history_dir} has no saved days. Skipping.")
        return
    print(f"{len(dates)} saved days ({dates[0]} to {dates[-1]})")

    try:
        results = engine.run_full_analysis(store, dates[-1])
    except Exception as e:
        print("Saved-history run raised an exception:")
        print(str(e))
        tb_lines = traceback.format_exc().splitlines()
        print("\n".join(tb_lines[-10:]))
        return
    _print_result(results)


def main():
    print("=== SALES COACH DIAGNOSTICS ===")
    run_synthetic_diagnostics()
    print("\n----------------------------------------\n")
    run_saved_history_diagnostics()
    print("\n=== DIAGNOSTICS COMPLETE ===")


if __name__ == "__main__":
    main()
