from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def quantize(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def cents_to_decimal(cents: int) -> Decimal:
    return (Decimal(int(cents or 0)) / 100).quantize(CENT)


def decimal_to_cents(value: Decimal) -> int:
    if isinstance(value, float):
        raise TypeError("Amounts must be Decimal, not float")
    return int((quantize(value) * 100).to_integral_value())


def parse_money(value: str) -> Decimal:
    """Parse a bank-export amount such as ``-1.234,56``, ``R$ 10,00`` or ``(12.50)``."""
    if value is None:
        raise ValueError("Missing amount")

    clean = value.strip()
    if not clean:
        raise ValueError("Empty amount")

    is_negative = clean.startswith("(") and clean.endswith(")")
    if is_negative:
        clean = clean[1:-1]

    clean = (
        clean.replace("R$", "").replace("€", "").replace("$", "").replace(" ", "")
    )
    if "," in clean and "." in clean:
        # whichever separator comes last is the decimal one
        if clean.rfind(",") > clean.rfind("."):
            clean = clean.replace(".", "").replace(",", ".")
        else:
            clean = clean.replace(",", "")
    else:
        clean = clean.replace(",", ".")
        if clean.count(".") > 1:
            parts = clean.split(".")
            clean = "".join(parts[:-1]) + "." + parts[-1]

    try:
        amount = quantize(Decimal(clean))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount: {value!r}") from exc

    return -amount if is_negative else amount
