"""Order assembly: resolved product + price + quantity into persistable lines."""
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, List, Dict, Sequence

from app.config import settings
from app.models.organization import Organization
from app.services.pricing_service import ResolvedPrice
from app.services.reference_resolver import ResolvedLine

TWO_PLACES = Decimal("0.01")


def quantize_money(value) -> Decimal:
    """Round to cents, half up."""
    return Decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def organization_vat_rate(organization: Optional[Organization]) -> Decimal:
    """Organization default VAT rate, or the configured constant."""
    if organization is not None and organization.default_vat_rate is not None:
        return Decimal(organization.default_vat_rate)
    return Decimal(settings.DEFAULT_VAT_RATE)


def effective_vat_rate(line: ResolvedLine, org_default_vat: Decimal) -> Decimal:
    """Line override, then product SKU rate, then organization default."""
    if line.vat_rate is not None:
        return Decimal(line.vat_rate)
    if line.product.vat_rate is not None:
        return Decimal(line.product.vat_rate)
    return Decimal(org_default_vat)


def line_description(line: ResolvedLine, marker: Optional[str] = None) -> str:
    """Caller description or product name; mix lines carry the marker tag."""
    if line.is_mix:
        marker = marker or settings.MIX_LINE_MARKER
        base = line.description or line.group.name
        if base.startswith(marker):
            return base
        return f"{marker} {base}"
    return line.description or line.product.name


def assemble_lines(
    resolved_lines: Sequence[ResolvedLine],
    prices: Dict[str, ResolvedPrice],
    org_default_vat: Decimal,
    mix_marker: Optional[str] = None,
) -> List[dict]:
    """
    Build flat line dicts ready for OrderService.commit_order.

    Keys: line_key, line_number, product_id, product_group_id, description,
    quantity, unit_price, vat_rate, line_total_ex_vat, line_vat_amount.
    """
    assembled = []
    for line in resolved_lines:
        price = prices.get(line.line_key)
        unit_price = quantize_money(price.unit_price if price else Decimal("0"))
        vat_rate = effective_vat_rate(line, org_default_vat)
        line_total = quantize_money(unit_price * line.quantity)
        line_vat = quantize_money(line_total * vat_rate / Decimal("100"))

        assembled.append({
            "line_key": line.line_key,
            "line_number": line.line_number,
            "product_id": line.product.id,
            "product_group_id": line.group.id if line.group else None,
            "description": line_description(line, mix_marker),
            "quantity": line.quantity,
            "unit_price": unit_price,
            "vat_rate": vat_rate,
            "line_total_ex_vat": line_total,
            "line_vat_amount": line_vat,
        })
    return assembled


def summarize_totals(lines: Sequence[dict]) -> Dict[str, Decimal]:
    """Order totals from assembled lines."""
    subtotal = sum((Decimal(line["line_total_ex_vat"]) for line in lines), Decimal("0"))
    vat = sum((Decimal(line["line_vat_amount"]) for line in lines), Decimal("0"))
    return {
        "subtotal_ex_vat": quantize_money(subtotal),
        "vat_amount": quantize_money(vat),
        "total_inc_vat": quantize_money(subtotal + vat),
    }
