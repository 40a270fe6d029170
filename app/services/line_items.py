"""Invoice line-item builder.

Turns a checkout cart into the flat list of Stripe invoice items:

    products / groups   positive, one line per standalone product or group
    discounts           negative
    surcharges          positive
    tax                 positive, single line

Every line is converted to integer cents exactly once, when it is emitted.
Pure functions only; invoice_service does the Stripe calls.
"""

from collections import namedtuple
from datetime import datetime

from app.services.money import to_cents, to_decimal

LineItem = namedtuple("LineItem", ["amount", "currency", "description", "metadata"])

SCHEDULED_TYPES = ("class", "course")


def build_line_items(cart, adjustments=None, tax=None, currency="aud"):
    """Build ordered invoice line items from a cart.

    Args:
        cart:        dict with a "products" list. Products carrying a "gId"
                     belong to a group instance and are billed once at the
                     group's "groupAmount".
        adjustments: dict with "discounts" / "surcharges", each holding an
                     "items" list of {"id", "name", "amount"}.
        tax:         tax amount in dollars (ignored when not positive).
        currency:    ISO currency code passed through to every line.

    Returns a list of LineItem with signed integer cent amounts.
    """
    adjustments = adjustments or {}
    items = []
    seen_groups = set()

    for product in (cart or {}).get("products") or []:
        group_instance = product.get("gId")
        if group_instance:
            if group_instance in seen_groups:
                continue
            seen_groups.add(group_instance)
            items.append(LineItem(
                amount=to_cents(product.get("groupAmount")),
                currency=currency,
                description=product.get("groupName") or "Group",
                metadata={
                    "type": "group",
                    "groupId": str(product.get("groupId") or ""),
                },
            ))
            continue

        items.append(LineItem(
            amount=to_cents(product_amount(product)),
            currency=currency,
            description=format_product_description(product),
            metadata={
                "productId": str(product.get("_id") or product.get("id") or ""),
                "productType": product.get("type") or "",
            },
        ))

    for discount in _adjustment_items(adjustments, "discounts"):
        items.append(LineItem(
            amount=-to_cents(discount.get("amount")),
            currency=currency,
            description=f"Discount: {discount.get('name', '')}",
            metadata={"discountId": str(discount.get("id") or ""), "type": "discount"},
        ))

    for surcharge in _adjustment_items(adjustments, "surcharges"):
        items.append(LineItem(
            amount=to_cents(surcharge.get("amount")),
            currency=currency,
            description=f"Surcharge: {surcharge.get('name', '')}",
            metadata={"surchargeId": str(surcharge.get("id") or ""), "type": "surcharge"},
        ))

    if tax is not None and to_decimal(tax) > 0:
        items.append(LineItem(
            amount=to_cents(tax),
            currency=currency,
            description="Tax",
            metadata={"type": "tax"},
        ))

    return items


def product_amount(product):
    """Dollar amount for one standalone cart product.

    Tiered products (class bookings with Adult / Child counts) sum
    qty * value across their prices. Everything else is the unit subtotal
    times qty, where a missing or zero qty counts as one.
    """
    prices = product.get("prices") or []
    if prices:
        return sum(
            (to_decimal(p.get("qty") or 0) * to_decimal(p.get("value"))
             for p in prices),
            to_decimal(0),
        )

    amount = product.get("amount") or {}
    unit = amount.get("subtotal") if isinstance(amount, dict) else None
    if unit is None:
        unit = product.get("value")
    quantity = product.get("qty") or 1
    return to_decimal(unit) * to_decimal(quantity)


def format_product_description(product):
    description = product.get("name") or "Item"

    if product.get("type") in SCHEDULED_TYPES:
        sessions = [
            _format_session(t) for t in product.get("selectedTimes") or []
        ]
        sessions = [s for s in sessions if s]
        if sessions:
            description += f" ({', '.join(sessions)})"

        participants = ", ".join(
            f"{p.get('qty')}x {p.get('name')}"
            for p in product.get("prices") or []
            if (p.get("qty") or 0) > 0
        )
        if participants:
            description += f" - {participants}"

    if product.get("variation"):
        description += f" - {product['variation']}"

    return description


def line_items_total(items):
    """Signed sum of line items, in cents."""
    return sum(item.amount for item in items)


def check_line_items_total(items, total, tolerance_cents=1):
    """Raise ValueError unless the items add up to the transaction total."""
    expected = to_cents(total)
    actual = line_items_total(items)
    if abs(actual - expected) > tolerance_cents:
        raise ValueError(
            f"Invoice line items total {actual} cents but transaction total "
            f"is {expected} cents"
        )
    return actual


def _adjustment_items(adjustments, key):
    section = adjustments.get(key) or {}
    return section.get("items") or []


def _format_session(entry):
    """Render one selected session as DD/MM/YYYY HH:MM (24h)."""
    if isinstance(entry, datetime):
        return entry.strftime("%d/%m/%Y %H:%M")
    if isinstance(entry, str):
        return _format_iso(entry) or entry
    if not isinstance(entry, dict):
        return None

    start = entry.get("start")
    if isinstance(start, datetime):
        return start.strftime("%d/%m/%Y %H:%M")
    if start:
        formatted = _format_iso(start)
        if formatted:
            return formatted
    return entry.get("label") or entry.get("time")


def _format_iso(value):
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None
    return parsed.strftime("%d/%m/%Y %H:%M")
