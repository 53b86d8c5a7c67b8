# Overview: Read-only shortage detection and transfer/purchase suggestions.

"""
Allocation planner.

For each requested line at the requesting store:

    available  = on-hand at the requesting store
    shortage   = max(0, requested - available)
    options    = other stores with stock, most stock first, then lowest store id
    transfer   = min(shortage, total stock at other stores)
    purchase   = shortage - transfer

purchase_suggestion is set when purchase > 0. mixed_solution is set when the
line would be filled from more than one source: some transfer plus either a
purchase or local stock.

The planner is advisory. It takes one snapshot read, holds no locks and
reserves nothing; writers re-validate stock when they move it.
"""
from __future__ import annotations

from typing import Sequence

from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import ProductVariant
from ..validation import coerce_int
from .inventory_service import get_store, quantity_map


def _merge_lines(items: Sequence[dict]) -> dict[int, int]:
    """Sum duplicate variant lines, keeping first-seen order."""
    merged: dict[int, int] = {}
    for idx, item in enumerate(items):
        variant_id = coerce_int(
            item.get("product_variant_id"), f"items[{idx}].product_variant_id", minimum=1
        )
        quantity = coerce_int(item.get("quantity"), f"items[{idx}].quantity", minimum=1)
        merged[variant_id] = merged.get(variant_id, 0) + quantity
    return merged


def _ensure_variants_exist(variant_ids) -> None:
    found = {
        row[0]
        for row in db.session.query(ProductVariant.id).filter(ProductVariant.id.in_(variant_ids))
    }
    missing = [vid for vid in variant_ids if vid not in found]
    if missing:
        raise NotFound(
            f"Product variant {missing[0]} not found",
            payload={"product_variant_ids": missing},
        )


def plan_line(
    *,
    store_id: int,
    variant_id: int,
    requested: int,
    stock_by_store: dict[int, int],
) -> dict | None:
    """Suggestion for one line, or None when the store can cover it."""
    available = stock_by_store.get(store_id, 0)
    shortage = max(0, requested - available)
    if shortage == 0:
        return None

    transfer_options = sorted(
        (
            {"store_id": sid, "available_quantity": qty}
            for sid, qty in stock_by_store.items()
            if sid != store_id and qty > 0
        ),
        key=lambda opt: (-opt["available_quantity"], opt["store_id"]),
    )
    elsewhere = sum(opt["available_quantity"] for opt in transfer_options)
    transfer_quantity = min(shortage, elsewhere)
    purchase_quantity = shortage - transfer_quantity

    purchase_suggestion = None
    if purchase_quantity > 0:
        purchase_suggestion = {"suggested_quantity": purchase_quantity}

    mixed_solution = None
    if transfer_quantity > 0 and (purchase_quantity > 0 or available > 0):
        mixed_solution = {
            "transfer_quantity": transfer_quantity,
            "purchase_quantity": purchase_quantity,
        }

    return {
        "product_variant_id": variant_id,
        "requested_quantity": requested,
        "available_quantity": available,
        "shortage_quantity": shortage,
        "transfer_options": transfer_options,
        "purchase_suggestion": purchase_suggestion,
        "mixed_solution": mixed_solution,
    }


def check_stock_availability(*, store_id: int, items: Sequence[dict]) -> dict:
    """
    Check whether `store_id` can fill `items` and suggest remedies.

    items: [{"product_variant_id": int, "quantity": int}, ...]
    Returns {"has_shortage": bool, "suggestions": [...]} with one suggestion
    per short line, in request order.
    """
    if not items:
        raise ValidationError("items must not be empty")
    store_id = coerce_int(store_id, "store_id", minimum=1)
    lines = _merge_lines(items)

    get_store(store_id)
    _ensure_variants_exist(list(lines))

    snapshot = quantity_map(lines)
    suggestions = []
    for variant_id, requested in lines.items():
        suggestion = plan_line(
            store_id=store_id,
            variant_id=variant_id,
            requested=requested,
            stock_by_store=snapshot[variant_id],
        )
        if suggestion is not None:
            suggestions.append(suggestion)

    return {"has_shortage": bool(suggestions), "suggestions": suggestions}
