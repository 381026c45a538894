import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from ..constants import CURRENCY_NAMES, CURRENCY_SYMBOLS

DEFAULT_CURRENCY = "AOA"
# Currencies whose symbol goes before the amount.
PREFIX_SYMBOL_CURRENCIES = {"BRL"}


def _group_thousands(integer_part: str) -> str:
    # pt-PT only groups numbers with five or more integer digits.
    if len(integer_part) < 5:
        return integer_part
    groups = []
    while integer_part:
        groups.insert(0, integer_part[-3:])
        integer_part = integer_part[:-3]
    return " ".join(groups)


def format_amount(amount: Any) -> str:
    try:
        value = Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return ""
    sign = "-" if value < 0 else ""
    integer_part, fraction = f"{abs(value):.2f}".split(".")
    return f"{sign}{_group_thousands(integer_part)},{fraction}"


def format_currency(amount: Any, currency: str = DEFAULT_CURRENCY) -> str:
    formatted = format_amount(amount)
    if not formatted:
        return ""
    symbol = CURRENCY_SYMBOLS.get(currency, currency)
    if currency in PREFIX_SYMBOL_CURRENCIES:
        return f"{symbol} {formatted}"
    return f"{formatted} {symbol}"


def parse_currency(text: str) -> Decimal:
    """Read an amount back from its formatted form; unreadable input is zero."""
    cleaned = re.sub(r"[^\d,.]", "", text or "")
    if "," in cleaned:
        cleaned = cleaned.replace(".", "").replace(",", ".", 1)
    try:
        return Decimal(cleaned) if cleaned else Decimal("0")
    except InvalidOperation:
        return Decimal("0")


def ensure_decimal(value: Any) -> Decimal:
    """Money columns come back as Decimal, JSON payloads as float or str."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def currency_name(currency: str) -> str:
    return CURRENCY_NAMES.get(currency, currency)
