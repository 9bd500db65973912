"""
Comprehensive Pytest Suite for the Menu Engineering Engine
==========================================================

Covers:
- Catalog building and loading resilience
- Window aggregation (exclusions, commutativity, debug counters)
- Quadrant classification (thresholds, tie-break, no-cost routing)
- Insufficient-data gate vs. empty-but-sufficient windows
- POS reconciliation and monthly / period statistics
- Ranking, export block, chart and the full run
"""

import pytest
import pandas as pd
import numpy as np
from pathlib import Path
import tempfile
import sys

# Add current directory to path
sys.path.insert(0, str(Path(__file__).parent))

import menu_engine as me
import promotions_module as pm
from generate_test_data import SalesHistoryGenerator
from history_store import DailyRecord, InMemoryHistoryStore


# =============================================================================
# FIXTURES
# =============================================================================

def make_history(day_quantities, start="2025-03-01"):
    """One record per entry of `day_quantities`, on consecutive days."""
    dates = pd.date_range(start, periods=len(day_quantities), freq="D")
    return InMemoryHistoryStore([
        DailyRecord(date=d.strftime("%Y-%m-%d"), item_quantities=dict(q))
        for d, q in zip(dates, day_quantities)
    ])


@pytest.fixture
def temp_dir():
    """Create temporary directory for test files"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def two_item_catalog():
    """A (price 10, cost 4) and B (price 10, cost 8)"""
    return pd.DataFrame({
        "item_id": ["A", "B"],
        "item_name": ["Alpha Noodles", "Beta Rice"],
        "category": ["Mains", "Mains"],
        "sell_price": [10.0, 10.0],
        "cost_per_unit": [4.0, 8.0],
    })


@pytest.fixture
def scenario_history():
    """10 saved days: A sells 5/day, B sells 1/day"""
    return make_history([{"A": 5, "B": 1}] * 10)


@pytest.fixture
def catalog():
    return me.build_catalog()


@pytest.fixture
def config():
    cfg = me.CONFIG.copy()
    cfg["target_increment"] = 1
    return cfg


# =============================================================================
# CATALOG
# =============================================================================

class TestCatalog:
    """Built-in catalog and file loading"""

    def test_builtin_catalog_shape(self, catalog):
        assert list(catalog.columns) == me.CATALOG_COLUMNS
        assert len(catalog) == 47
        assert catalog["item_id"].is_unique

    def test_beverages_and_liquors_have_no_cost(self, catalog):
        drinks = catalog[catalog["category"].isin(["Beverages", "Liquors"])]
        assert len(drinks) == 21
        assert drinks["cost_per_unit"].isna().all()

    def test_excluded_names_are_all_in_catalog(self, catalog):
        names = set(catalog["item_name"])
        assert set(me.CONFIG["excluded_item_names"]) <= names
        assert set(me.CONFIG["soft_drink_names"]) <= names

    def test_load_catalog_maps_columns_and_strips_currency(self, temp_dir):
        path = temp_dir / "menu.csv"
        pd.DataFrame({
            "Item Name": ["Jjajangmyeon", "Coke 330ml"],
            "Category": ["main dishes", "drinks"],
            "Price": ["$7.00", "$1.00"],
            "Cost": ["1.42", ""],
        }).to_csv(path, index=False, encoding="utf-8-sig")

        df = me.load_catalog(str(path))

        assert df["item_id"].tolist() == ["i1", "i2"]
        assert df["category"].tolist() == ["Mains", "Beverages"]
        assert df["sell_price"].tolist() == [7.0, 1.0]
        assert df.loc[0, "cost_per_unit"] == pytest.approx(1.42)
        assert pd.isna(df.loc[1, "cost_per_unit"])

    def test_load_catalog_reads_excel(self, temp_dir, catalog):
        path = temp_dir / "menu.xlsx"
        catalog.to_excel(path, index=False)
        df = me.load_catalog(str(path))
        assert len(df) == len(catalog)
        assert df["cost_per_unit"].isna().sum() == 21

    def test_load_catalog_missing_columns_raises(self, temp_dir):
        path = temp_dir / "menu.csv"
        pd.DataFrame({"Dish": ["X"], "Amount": [1]}).to_csv(path, index=False)
        with pytest.raises(ValueError, match="missing required columns"):
            me.load_catalog(str(path))

    def test_load_catalog_duplicate_ids_raise(self, temp_dir):
        path = temp_dir / "menu.csv"
        pd.DataFrame({
            "item_id": ["x1", "x1"],
            "item_name": ["One", "Two"],
            "sell_price": [1, 2],
        }).to_csv(path, index=False)
        with pytest.raises(ValueError, match="duplicate item ids"):
            me.load_catalog(str(path))

    def test_category_typo_is_normalized(self):
        assert me.normalize_category_name("toppngs") == "Toppings"
        assert me.normalize_category_name(None) == "Uncategorized"


# =============================================================================
# SHARED HELPERS
# =============================================================================

class TestHelpers:

    def test_round_half_up(self):
        assert me.round_half_up(2.5) == 3
        assert me.round_half_up(-1.5) == -1
        assert me.round_half_up(0.125, 2) == pytest.approx(0.13)

    def test_round_to_step(self):
        assert me.round_to_step(8.45, 0.5) == 8.5
        assert me.round_to_step(8.2, 0.5) == 8.0
        assert me.round_to_step(1.3, 0.5) == 1.5

    def test_clamp(self):
        assert me.clamp(5, 10, 20) == 10
        assert me.clamp(25, 10, 20) == 20

    def test_normalize_item_name(self):
        assert me.normalize_item_name("Coke 330ml") == "coke330ml"
        assert me.normalize_item_name(" Mapo-Tofu ") == "mapotofu"
        assert me.normalize_item_name(np.nan) == ""


# =============================================================================
# AGGREGATION
# =============================================================================

class TestAggregation:

    def test_sums_over_window(self, scenario_history, two_item_catalog):
        dates = scenario_history.list_dates("2025-03-01", "2025-03-10")
        aggregated, stats = me.aggregate_quantities(scenario_history, dates, two_item_catalog)
        assert aggregated == {"A": 50, "B": 10}
        assert stats["dates_count"] == 10
        assert stats["loaded_count"] == 10
        assert stats["items_count_total"] == 20
        assert stats["qty_positive_items_count"] == 20
        assert stats["aggregated_ids_count"] == 2
        assert stats["categories_count_total"] == 10

    def test_record_order_does_not_matter(self, two_item_catalog):
        days = [{"A": n, "B": 10 - n} for n in range(1, 8)]
        forward = make_history(days)
        backward = InMemoryHistoryStore(
            [forward.read(d) for d in reversed(forward.list_dates("2025-03-01", "2025-03-07"))]
        )
        dates = forward.list_dates("2025-03-01", "2025-03-07")
        a, _ = me.aggregate_quantities(forward, dates, two_item_catalog)
        b, _ = me.aggregate_quantities(backward, list(reversed(dates)), two_item_catalog)
        assert a == b == {"A": 28, "B": 42}

    def test_excluded_items_never_aggregated(self, catalog):
        history = make_history([{"f1": 3, "b10": 50, "l5": 0}] * 7)
        dates = history.list_dates("2025-03-01", "2025-03-07")
        aggregated, stats = me.aggregate_quantities(
            history, dates, catalog, me.CONFIG["excluded_item_names"]
        )
        assert aggregated == {"f1": 21}
        assert "b10" not in aggregated and "l5" not in aggregated
        assert stats["excluded_entries_count"] == 14

    def test_zero_quantities_skipped(self, two_item_catalog):
        history = make_history([{"A": 0, "B": 2}] * 7)
        dates = history.list_dates("2025-03-01", "2025-03-07")
        aggregated, stats = me.aggregate_quantities(history, dates, two_item_catalog)
        assert aggregated == {"B": 14}
        assert stats["qty_positive_items_count"] == 7
        assert stats["items_count_total"] == 14


# =============================================================================
# CLASSIFICATION
# =============================================================================

class TestClassification:

    def test_concrete_scenario(self, scenario_history, two_item_catalog, config):
        result = me.classify(scenario_history, "2025-03-01", "2025-03-10", two_item_catalog, config)

        assert not result.insufficient_data
        assert result.analyzed_dates_count == 10
        assert result.popularity_threshold == pytest.approx(30)
        assert result.profitability_threshold == pytest.approx(4)
        assert result.stars["item_id"].tolist() == ["A"]
        assert result.dogs["item_id"].tolist() == ["B"]
        assert result.cash_cows.empty and result.puzzles.empty

        a = result.stars.iloc[0]
        assert a["revenue"] == pytest.approx(500)
        assert a["cogs"] == pytest.approx(200)
        assert a["contribution_margin"] == pytest.approx(6)
        assert a["gross_profit"] == pytest.approx(300)

        plans = pm.plan_promotions(result, two_item_catalog, config)
        assert plans[0].plan_type == pm.MENU_BOARD
        assert plans[0].item_id == "A"
        assert plans[0].discount == "NO DISCOUNT"
        assert plans[0].daily_target_qty == 6

    def test_insufficient_data_scenario(self, two_item_catalog):
        history = make_history([{"A": 5, "B": 1}] * 5)
        result = me.classify(history, "2025-03-01", "2025-03-10", two_item_catalog)

        assert result.insufficient_data
        assert result.analyzed_dates_count == 5
        assert result.popularity_threshold == 0
        assert result.profitability_threshold == 0
        for df in [result.stars, result.cash_cows, result.puzzles, result.dogs, result.no_cost_items]:
            assert df.empty

    @pytest.mark.parametrize("days", range(0, 7))
    def test_gate_reports_true_date_count(self, two_item_catalog, days):
        history = make_history([{"A": 5}] * days)
        result = me.classify(history, "2025-03-01", "2025-03-31", two_item_catalog)
        assert result.insufficient_data
        assert result.analyzed_dates_count == days
        assert result.items_df.empty

    def test_empty_but_sufficient_window(self, two_item_catalog):
        history = make_history([{}] * 7)
        result = me.classify(history, "2025-03-01", "2025-03-07", two_item_catalog)
        assert not result.insufficient_data
        assert result.analyzed_dates_count == 7
        assert result.items_df.empty
        assert result.popularity_threshold == 0
        assert not result.has_classification

    def test_missing_days_inside_window_are_not_counted(self, two_item_catalog):
        history = make_history([{"A": 1}] * 7, start="2025-03-01")
        history.delete("2025-03-04")
        result = me.classify(history, "2025-03-01", "2025-03-07", two_item_catalog)
        assert result.insufficient_data
        assert result.analyzed_dates_count == 6

    def test_average_quantity_tie_is_high(self):
        catalog = pd.DataFrame({
            "item_id": ["x", "y", "z"],
            "item_name": ["X", "Y", "Z"],
            "category": ["Mains"] * 3,
            "sell_price": [10.0] * 3,
            "cost_per_unit": [5.0] * 3,
        })
        history = make_history([{"x": 10, "y": 20, "z": 30}] + [{}] * 6)
        result = me.classify(history, "2025-03-01", "2025-03-07", catalog)

        items = result.items_df.set_index("item_id")
        assert result.popularity_threshold == pytest.approx(20)
        assert items.loc["y", "popularity"] == "High"
        assert items.loc["y", "quadrant"] == "Stars"
        assert items.loc["x", "quadrant"] == "Puzzles"
        assert (items["profitability"] == "High").all()

    def test_no_cost_items_routed_separately(self, two_item_catalog):
        catalog = pd.concat([two_item_catalog, pd.DataFrame({
            "item_id": ["N"], "item_name": ["Mystery Soup"], "category": ["Mains"],
            "sell_price": [5.0], "cost_per_unit": [np.nan],
        })], ignore_index=True)
        history = make_history([{"A": 5, "B": 1, "N": 100}] * 10)
        result = me.classify(history, "2025-03-01", "2025-03-10", catalog)

        assert result.no_cost_items["item_id"].tolist() == ["N"]
        assert result.popularity_threshold == pytest.approx(30)
        assert result.items_df["popularity"].dtype == object
        n = result.no_cost_items.iloc[0]
        assert n["popularity"] is None and n["profitability"] is None
        assert pd.isna(n["cogs"]) and pd.isna(n["contribution_margin"]) and pd.isna(n["gross_profit"])
        assert n["revenue"] == pytest.approx(5000)

    def test_quadrants_are_complete_and_disjoint(self, catalog):
        records = SalesHistoryGenerator(seed=7).generate_history(catalog, days=14)
        history = InMemoryHistoryStore(records)
        result = me.classify(history, records[0].date, records[-1].date, catalog)

        ids = [set(df["item_id"]) for df in [result.stars, result.cash_cows, result.puzzles, result.dogs]]
        union = set().union(*ids)
        assert sum(len(s) for s in ids) == len(union)

        costed = result.items_df[result.items_df["cost_per_unit"].notna()]
        assert union == set(costed["item_id"])
        assert union.isdisjoint(set(result.no_cost_items["item_id"]))

    def test_zero_unit_cost_is_costed(self):
        catalog = pd.DataFrame({
            "item_id": ["free", "paid"], "item_name": ["Free Kimchi", "Paid Dish"],
            "category": ["Mains", "Mains"], "sell_price": [2.0, 10.0], "cost_per_unit": [0.0, 4.0],
        })
        history = make_history([{"free": 1, "paid": 1}] * 7)
        result = me.classify(history, "2025-03-01", "2025-03-07", catalog)
        assert result.no_cost_items.empty
        assert "free" in set(result.items_df["item_id"])

    def test_uncataloged_ids_counted_and_dropped(self, two_item_catalog):
        history = make_history([{"A": 1, "ghost": 3}] * 7)
        result = me.classify(history, "2025-03-01", "2025-03-07", two_item_catalog)
        assert "ghost" not in set(result.items_df["item_id"])
        assert result.debug_stats["dropped_uncataloged_ids"] == 1

    def test_classify_month_has_no_gate_or_exclusions(self, catalog):
        history = make_history([{"f1": 2, "b10": 4}] * 3, start="2025-04-10")
        result = me.classify_month(history, "2025-04", catalog)
        assert not result.insufficient_data
        assert result.analyzed_dates_count == 3
        assert set(result.items_df["item_id"]) == {"f1", "b10"}
        assert result.no_cost_items["item_id"].tolist() == ["b10"]
        assert result.window_start == "2025-04-01" and result.window_end == "2025-04-30"

    def test_classify_is_idempotent(self, catalog):
        records = SalesHistoryGenerator(seed=3).generate_history(catalog, days=10)
        history = InMemoryHistoryStore(records)
        first = me.classify(history, records[0].date, records[-1].date, catalog)
        second = me.classify(history, records[0].date, records[-1].date, catalog)

        assert first.items_df.equals(second.items_df)
        assert first.debug_stats == second.debug_stats
        assert first.popularity_threshold == second.popularity_threshold
        assert pm.plan_promotions(first, catalog, rng=np.random.default_rng(9)) == \
            pm.plan_promotions(second, catalog, rng=np.random.default_rng(9))

    def test_window_for(self):
        assert me.window_for("2025-03-10", 7) == ("2025-03-04", "2025-03-10")


# =============================================================================
# RANKING
# =============================================================================

class TestRanking:

    @pytest.fixture
    def result(self):
        catalog = pd.DataFrame({
            "item_id": ["p1", "p2", "p3", "d1", "d2", "s1"],
            "item_name": ["P One", "P Two", "P Three", "D One", "D Two", "S One"],
            "category": ["Mains"] * 6,
            "sell_price": [20.0, 20.0, 30.0, 5.0, 6.0, 20.0],
            "cost_per_unit": [5.0, 5.0, 10.0, 4.0, 5.0, 4.0],
        })
        history = make_history([{"p1": 1, "p2": 2, "p3": 1, "d1": 3, "d2": 1, "s1": 30}] * 7)
        return me.classify(history, "2025-03-01", "2025-03-07", catalog)

    def test_puzzles_by_margin_then_revenue(self, result):
        assert me.ranked_puzzles(result)["item_id"].tolist() == ["p3", "p2", "p1"]

    def test_dogs_by_revenue_ascending(self, result):
        assert me.ranked_dogs(result)["item_id"].tolist() == ["d2", "d1"]

    def test_rank_quadrants_lines(self, result):
        ranked = me.rank_quadrants(result)
        assert len(ranked["puzzles_lines"]) == 3
        assert ranked["stars_lines"][0].startswith("S One")
        assert ranked["no_cost_items"] == []
        assert ranked["popularity_threshold"] == f"{result.popularity_threshold:.1f}"


# =============================================================================
# RECONCILIATION + STATISTICS
# =============================================================================

class TestReconciliation:

    def test_daily_results(self, catalog):
        record = DailyRecord(
            date="2025-03-01",
            item_quantities={"f1": 2, "a2": 3},
            pos_sales=17.5, orders=4, visit_count=8,
        )
        daily = me.calculate_daily_results(record, catalog)
        assert daily["calc_sales"] == pytest.approx(17.0)
        assert daily["gap"] == pytest.approx(0.5)
        assert daily["gap_rate"] == pytest.approx(2.86)
        assert daily["status"] == "warning"
        assert daily["aov"] == pytest.approx(4.25)
        assert daily["conversion_rate"] == pytest.approx(50.0)
        assert daily["addon_per_order"] == pytest.approx(0.8)

    def test_status_levels(self, catalog):
        ok = DailyRecord(date="2025-03-01", item_quantities={"f1": 1}, pos_sales=7.0)
        critical = DailyRecord(date="2025-03-01", item_quantities={"f1": 1}, pos_sales=100.0)
        assert me.calculate_daily_results(ok, catalog)["status"] == "ok"
        assert me.calculate_daily_results(critical, catalog)["status"] == "critical"

    def test_zero_denominators(self, catalog):
        record = DailyRecord(date="2025-03-01", item_quantities={"f1": 1})
        daily = me.calculate_daily_results(record, catalog)
        assert daily["gap_rate"] == 0
        assert daily["status"] == "ok"
        assert daily["aov"] == 0 and daily["conversion_rate"] == 0 and daily["addon_per_order"] == 0

    def test_monthly_summary(self):
        history = InMemoryHistoryStore([
            DailyRecord(date="2025-03-01", pos_sales=100),
            DailyRecord(date="2025-03-15", pos_sales=200),
            DailyRecord(date="2025-03-31", pos_sales=300),
            DailyRecord(date="2025-04-01", pos_sales=999),
        ])
        month = me.monthly_summary(history, "2025-03", 1200)
        assert month["total"] == pytest.approx(600)
        assert month["days_with_data"] == 3
        assert month["daily_average"] == pytest.approx(200)
        assert month["achievement_rate"] == pytest.approx(50.0)

    def test_monthly_summary_empty_month(self):
        month = me.monthly_summary(InMemoryHistoryStore(), "2025-02")
        assert month["total"] == 0 and month["daily_average"] == 0
        assert month["monthly_target"] == me.CONFIG["monthly_target"]

    def test_period_summary(self):
        history = InMemoryHistoryStore([
            DailyRecord(date="2025-03-01", pos_sales=100, orders=10, visit_count=20),
            DailyRecord(date="2025-03-02", pos_sales=50, orders=5, visit_count=6),
        ])
        summary = me.period_summary(history, "2025-03-01", "2025-03-31")
        assert summary["total_sales"] == pytest.approx(150)
        assert summary["total_orders"] == 15
        assert summary["total_visitors"] == 26
        assert len(summary["daily_df"]) == 2


# =============================================================================
# OUTPUTS + FULL RUN
# =============================================================================

class TestFullRun:

    @pytest.fixture
    def history(self, catalog):
        return InMemoryHistoryStore(SalesHistoryGenerator(seed=42).generate_history(catalog, days=30))

    def test_run_full_analysis(self, history):
        results = me.run_full_analysis(history, "2025-01-30")
        for key in ["catalog_df", "menu_engineering", "ranked", "promotion_plans", "record",
                    "daily_results", "monthly_summary", "export_block", "config"]:
            assert key in results
        assert not results["menu_engineering"].insufficient_data
        assert results["menu_engineering"].window_start == "2025-01-24"
        assert 1 <= len(results["promotion_plans"]) <= 3
        assert results["daily_results"]["date"] == "2025-01-30"
        assert results["monthly_summary"]["days_with_data"] == 30

    def test_run_full_analysis_insufficient(self, history):
        results = me.run_full_analysis(history, "2025-01-03")
        assert results["menu_engineering"].insufficient_data
        assert results["promotion_plans"] == []
        assert "Insufficient data" in results["export_block"]

    def test_run_full_analysis_is_repeatable(self, history):
        first = me.run_full_analysis(history, "2025-01-30")
        second = me.run_full_analysis(history, "2025-01-30")
        assert first["promotion_plans"] == second["promotion_plans"]
        assert first["export_block"] == second["export_block"]

    def test_export_block_sections(self, history):
        block = me.run_full_analysis(history, "2025-01-30")["export_block"]
        for header in ["TODAY:", "MONTH_TO_DATE:", "STARS (markdown):", "NO_COST_ITEMS:", "BOOST_PLANS:"]:
            assert header in block

    def test_chart_saved(self, history, catalog, temp_dir):
        result = me.classify(history, "2025-01-01", "2025-01-30", catalog)
        path = me.save_menu_engineering_chart(result, str(temp_dir / "charts" / "me.png"))
        assert path is not None and Path(path).exists()

    def test_chart_skipped_without_costed_items(self, two_item_catalog, temp_dir):
        result = me.classify(make_history([{}] * 7), "2025-03-01", "2025-03-07", two_item_catalog)
        assert me.save_menu_engineering_chart(result, str(temp_dir / "me.png")) is None
