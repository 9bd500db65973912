"""
Promotions Module - Boost Plans for the Next Trading Day

Turns a menu engineering result into at most three ranked plans:

1. MENU_BOARD    - feature the best Star (or Cash Cow) on the board, no discount
2. STAFF_UPSELL  - staff push the next Star/Cash Cow with a free soft drink
3. SET_DISCOUNT  - bundle the most profitable Puzzle with a cheap companion,
                   discount sized so the set keeps its margin floor

Architecture:
- menu_engine.classify() -> MenuEngineeringResult -> plan_promotions() -> [PromotionPlan]

No item is targeted twice in one call, and companions are consumed too.
"""

import math
from dataclasses import dataclass
from typing import List, Optional

import numpy as np
import pandas as pd

from menu_engine import (
    CONFIG,
    MenuEngineeringResult,
    clamp,
    normalize_item_name,
    ranked_cash_cows,
    ranked_puzzles,
    ranked_stars,
    round_half_up,
    round_to_step,
)

MENU_BOARD = "MENU_BOARD"
STAFF_UPSELL = "STAFF_UPSELL"
SET_DISCOUNT = "SET_DISCOUNT"
NO_DISCOUNT = "NO DISCOUNT"


@dataclass
class PromotionPlan:
    """
    A single boost plan for the next day.

    Attributes:
        plan_type: MENU_BOARD, STAFF_UPSELL or SET_DISCOUNT
        item_id: Catalog id of the promoted item
        target_item_name: Display name of the promoted item
        set_name: Short name shown to staff (e.g. "Mapo Tofu + Coke 330ml Set")
        set_composition: What the customer gets, with prices
        discount: "NO DISCOUNT", "FREE <item>" or "<N>% OFF"
        discount_pct: Whole-number percentage (0 unless SET_DISCOUNT)
        discount_amount: Currency amount taken off the set (0 unless SET_DISCOUNT)
        companion_item_id: Free drink or set companion, if any
        companion_item_name: Display name of the companion
        daily_target_qty: Units of the promoted item to sell tomorrow
        daily_target_reason: How the target was derived
        staff_comment: Instruction for the floor staff
        reason: Why this item was chosen
    """
    plan_type: str
    item_id: str
    target_item_name: str
    set_name: str
    set_composition: str
    discount: str
    daily_target_qty: int
    daily_target_reason: str
    staff_comment: str
    reason: str
    discount_pct: int = 0
    discount_amount: float = 0.0
    companion_item_id: Optional[str] = None
    companion_item_name: Optional[str] = None


# =============================================================================
# DAILY TARGET
# =============================================================================

def calculate_daily_target(qty_window: int,
                           analyzed_dates_count: int,
                           config: dict = CONFIG,
                           rng: np.random.Generator = None) -> tuple[int, str]:
    """
    Tomorrow's unit target: the window's daily average (at least 1) plus an
    increment. `config["target_increment"]` fixes the increment; when it is
    None a random 1 or 2 is drawn from `rng`.
    """
    if rng is None:
        rng = np.random.default_rng(config["random_seed"])
    days = max(1, int(analyzed_dates_count))
    baseline = max(1, int(round_half_up(qty_window / days)))
    increment = config.get("target_increment")
    if increment is None:
        increment = int(rng.integers(1, 3))
    reason = (
        f"last {days} days: {int(qty_window)} sold "
        f"({qty_window / days:.1f}/day) -> baseline {baseline} + {increment}"
    )
    return baseline + increment, reason


# =============================================================================
# SET DISCOUNT SIZING
# =============================================================================

def size_set_discount(set_price: float,
                      set_cost: float,
                      config: dict = CONFIG) -> Optional[tuple[float, int]]:
    """
    Largest sensible discount for a two-item set.

    Args:
        set_price: Sum of both items' prices
        set_cost: Sum of both items' unit costs
        config: Uses margin_floor, min_discount_pct, discount_pct_step,
            price_rounding_step, enforce_margin_floor

    Returns:
        (discount_amount, discount_pct) or None when no discount is worth offering,
        including when the margin floor leaves less than the minimum discount
    """
    if set_price <= 0:
        return None

    floor = config["margin_floor"]
    pct_step = config["discount_pct_step"]
    price_step = config["price_rounding_step"]
    min_pct = config["min_discount_pct"] * 100

    max_discount = set_price - (set_cost / floor)
    min_discount = set_price * config["min_discount_pct"]

    if max_discount > min_discount:
        pct = math.floor((max_discount / set_price) * 100 / pct_step) * pct_step
        pct = clamp(pct, min_pct, 100)
        amount = round_to_step(set_price * pct / 100, price_step)
    else:
        amount = round_to_step(min_discount, price_step)
        set_profit = set_price - set_cost
        if set_profit - amount < set_profit * 0.5:
            amount = 0.0

    if config.get("enforce_margin_floor", True) and amount > 0:
        # (price - discount - cost) / price must stay >= floor
        cap = set_price * (1 - floor) - set_cost
        if amount > cap + 1e-9:
            amount = math.floor(cap / price_step + 1e-9) * price_step
        if amount < round_to_step(min_discount, price_step) - 1e-9:
            return None

    if amount <= 0:
        return None

    final_pct = int(round_half_up(amount / set_price * 100 / pct_step) * pct_step)
    if final_pct <= 0:
        return None
    return float(amount), final_pct


# =============================================================================
# COMPANION SELECTION
# =============================================================================

def soft_drinks(catalog: pd.DataFrame, config: dict = CONFIG) -> pd.DataFrame:
    wanted = {normalize_item_name(n) for n in config.get("soft_drink_names", [])}
    mask = catalog["item_name"].map(normalize_item_name).isin(wanted)
    return catalog[mask]


def is_fried(item_name: str, config: dict = CONFIG) -> bool:
    name = normalize_item_name(item_name)
    return any(normalize_item_name(k) in name for k in config.get("fried_keywords", []))


def choose_set_companion(main: pd.Series,
                         catalog: pd.DataFrame,
                         used_ids: set,
                         config: dict = CONFIG,
                         rng: np.random.Generator = None) -> Optional[pd.Series]:
    """
    Second item for a set built around `main`.

    An unused soft drink wins (picked at random). Otherwise the cheapest
    unused costed item that is not the main item: toppings never go with
    fried dishes, the side dish always qualifies, anything else must be
    priced under `pairing_max_price`.
    """
    if rng is None:
        rng = np.random.default_rng(config["random_seed"])
    main_id = str(main["item_id"])

    drinks = soft_drinks(catalog, config)
    drinks = drinks[~drinks["item_id"].astype(str).isin(used_ids | {main_id})]
    if not drinks.empty:
        return drinks.iloc[int(rng.integers(0, len(drinks)))]

    pool = catalog[
        ~catalog["item_id"].astype(str).isin(used_ids | {main_id})
        & catalog["cost_per_unit"].notna()
    ]
    if is_fried(main["item_name"], config):
        pool = pool[pool["category"] != config["topping_category"]]

    side_dish = pool["item_name"].map(normalize_item_name) == normalize_item_name(config["side_dish_name"])
    pool = pool[side_dish | (pool["sell_price"] < config["pairing_max_price"])]
    if pool.empty:
        return None
    return pool.sort_values(["sell_price", "item_id"], kind="mergesort").iloc[0]


# =============================================================================
# PLAN BUILDERS
# =============================================================================

def _first_unused(candidates: pd.DataFrame, used_ids: set, catalog_ids: set) -> Optional[pd.Series]:
    for _, row in candidates.iterrows():
        item_id = str(row["item_id"])
        if item_id in used_ids or item_id not in catalog_ids:
            continue
        return row
    return None


def _reason(row: pd.Series, quadrant: str, config: dict) -> str:
    return (
        f"{quadrant}: contribution margin {config['currency']}{row['contribution_margin']:.2f}, "
        f"{int(row['qty_window'])} sold in window"
    )


def _menu_board_plan(row, result, config, rng) -> PromotionPlan:
    target, target_reason = calculate_daily_target(row["qty_window"], result.analyzed_dates_count, config, rng)
    return PromotionPlan(
        plan_type=MENU_BOARD,
        item_id=str(row["item_id"]),
        target_item_name=row["item_name"],
        set_name=f"Today's Pick: {row['item_name']}",
        set_composition=f"{row['item_name']} ({config['currency']}{row['sell_price']:.2f})",
        discount=NO_DISCOUNT,
        daily_target_qty=target,
        daily_target_reason=target_reason,
        staff_comment=f"Put {row['item_name']} at the top of the board and mention it when taking orders.",
        reason=_reason(row, row["quadrant"], config),
    )


def _staff_upsell_plan(row, drink_id, drink_name, result, config, rng) -> PromotionPlan:
    target, target_reason = calculate_daily_target(row["qty_window"], result.analyzed_dates_count, config, rng)
    return PromotionPlan(
        plan_type=STAFF_UPSELL,
        item_id=str(row["item_id"]),
        target_item_name=row["item_name"],
        set_name=f"{row['item_name']} + free {drink_name}",
        set_composition=f"{row['item_name']} ({config['currency']}{row['sell_price']:.2f}) + {drink_name} (free)",
        discount=f"FREE {drink_name}",
        companion_item_id=drink_id,
        companion_item_name=drink_name,
        daily_target_qty=target,
        daily_target_reason=target_reason,
        staff_comment=f"Recommend {row['item_name']} to every table; offer a free {drink_name} when they order it.",
        reason=_reason(row, row["quadrant"], config),
    )


def _set_discount_plan(row, companion, sizing, result, config, rng) -> PromotionPlan:
    currency = config["currency"]
    amount, pct = sizing
    set_price = float(row["sell_price"]) + float(companion["sell_price"])
    target, target_reason = calculate_daily_target(row["qty_window"], result.analyzed_dates_count, config, rng)
    return PromotionPlan(
        plan_type=SET_DISCOUNT,
        item_id=str(row["item_id"]),
        target_item_name=row["item_name"],
        set_name=f"{row['item_name']} + {companion['item_name']} Set",
        set_composition=(
            f"{row['item_name']} ({currency}{row['sell_price']:.2f}) + {companion['item_name']} "
            f"({currency}{companion['sell_price']:.2f}) = {currency}{set_price:.2f} -> "
            f"{currency}{set_price - amount:.2f}"
        ),
        discount=f"{pct}% OFF",
        discount_pct=pct,
        discount_amount=amount,
        companion_item_id=str(companion["item_id"]),
        companion_item_name=companion["item_name"],
        daily_target_qty=target,
        daily_target_reason=target_reason,
        staff_comment=f"Offer the {row['item_name']} set ({pct}% off) to guests ordering for two or more.",
        reason=_reason(row, "Puzzles", config),
    )


def plan_promotions(result: MenuEngineeringResult,
                    catalog: pd.DataFrame,
                    config: dict = CONFIG,
                    rng: np.random.Generator = None) -> List[PromotionPlan]:
    """
    Up to `max_plans` boost plans in fixed order: menu board, staff upsell,
    set discount. A slot with no eligible item is left out, never padded.

    Args:
        result: Output of menu_engine.classify()
        catalog: Full catalog (companions may come from excluded categories)
        config: Configuration dictionary (defaults to menu_engine.CONFIG)
        rng: numpy Generator; defaults to one seeded with config["random_seed"]
    """
    if catalog is None or catalog.empty or result.items_df.empty:
        return []
    if rng is None:
        rng = np.random.default_rng(config["random_seed"])

    catalog_ids = set(catalog["item_id"].astype(str))
    used_ids: set = set()
    plans: List[PromotionPlan] = []

    featured = pd.concat([ranked_stars(result), ranked_cash_cows(result)], ignore_index=True)

    # 1. Menu board
    row = _first_unused(featured, used_ids, catalog_ids)
    if row is not None:
        plans.append(_menu_board_plan(row, result, config, rng))
        used_ids.add(str(row["item_id"]))

    # 2. Staff upsell with a free soft drink
    row = _first_unused(featured, used_ids, catalog_ids)
    if row is not None:
        drinks = soft_drinks(catalog, config)
        drinks = drinks[~drinks["item_id"].astype(str).isin(used_ids | {str(row["item_id"])})]
        if not drinks.empty:
            drink = drinks.iloc[int(rng.integers(0, len(drinks)))]
            drink_id, drink_name = str(drink["item_id"]), drink["item_name"]
            used_ids.add(drink_id)
        else:
            # catalog has no free soft drink left: name one from the fixed list
            drink_id, drink_name = None, str(rng.choice(config["soft_drink_names"]))
        plans.append(_staff_upsell_plan(row, drink_id, drink_name, result, config, rng))
        used_ids.add(str(row["item_id"]))

    # 3. Set discount on the best Puzzle
    row = _first_unused(ranked_puzzles(result), used_ids, catalog_ids)
    if row is not None:
        companion = choose_set_companion(row, catalog, used_ids, config, rng)
        if companion is not None:
            companion_cost = companion["cost_per_unit"]
            set_price = float(row["sell_price"]) + float(companion["sell_price"])
            set_cost = float(row["cost_per_unit"]) + (0.0 if pd.isna(companion_cost) else float(companion_cost))
            sizing = size_set_discount(set_price, set_cost, config)
            if sizing is not None:
                plans.append(_set_discount_plan(row, companion, sizing, result, config, rng))
                used_ids.update({str(row["item_id"]), str(companion["item_id"])})

    return plans[: config["max_plans"]]
