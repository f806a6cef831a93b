from __future__ import annotations

from typing import Any

from .errors import InvalidInput

# Maximum amount: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical amounts
MAX_AMOUNT_CENTS = 999_999_999


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion for request payloads.

    Accepts ints and plain digit strings (optional leading minus). Rejects
    bools, floats, decimals and scientific notation.
    """
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise InvalidInput(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise InvalidInput(f"{field} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise InvalidInput(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise InvalidInput(f"{field} must be an integer")
    # Reject floats explicitly
    if isinstance(value, float):
        raise InvalidInput(f"{field} must be an integer, not a decimal")
    raise InvalidInput(f"{field} must be an integer")


def coerce_cents(value: Any, field: str, *, default: int | None = None) -> int:
    """Non-negative integer cents within MAX_AMOUNT_CENTS."""
    if value is None:
        if default is None:
            raise InvalidInput(f"{field} is required")
        return default
    cents = coerce_int(value, field)
    if cents < 0:
        raise InvalidInput(f"{field} must be >= 0")
    if cents > MAX_AMOUNT_CENTS:
        raise InvalidInput(f"{field} cannot exceed {MAX_AMOUNT_CENTS}")
    return cents


def normalize_cart(items: Any) -> list[dict]:
    """
    Validate cart shape: a non-empty list of {"product_id", "quantity"}
    with positive integer quantities. Order is preserved.
    """
    if not isinstance(items, (list, tuple)) or not items:
        raise InvalidInput("Sale must contain at least one item")

    cart = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise InvalidInput("Cart items must be objects", details={"line": index})
        if item.get("product_id") is None:
            raise InvalidInput("product_id is required", details={"line": index})
        if item.get("quantity") is None:
            raise InvalidInput("quantity is required", details={"line": index})

        product_id = coerce_int(item["product_id"], "product_id")
        quantity = coerce_int(item["quantity"], "quantity")
        if quantity <= 0:
            raise InvalidInput(
                "Quantity must be positive",
                details={"line": index, "product_id": product_id, "quantity": quantity},
            )
        cart.append({"product_id": product_id, "quantity": quantity})
    return cart
