"""Spanish (es-ES) parsing and formatting of money, rates, terms and dates.

Amounts are carried as ``Decimal`` and only become locale text when a
field's display value is rendered: ``.`` groups thousands, ``,`` marks
decimals, money ends in `` €`` and percentages in `` %``.
"""

import re
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

_CENT = Decimal("0.01")

_MONEY_RE = re.compile(r"(?<![\d,.])(\d{1,3}(?:[.\s]\d{3})+(?:,\d{1,2})?|\d+(?:,\d{1,2})?)(?![\d])")
_PERCENT_RE = re.compile(r"([+\-]?\d+(?:[.,]\d+)?)\s*%?")
_YEARS_RE = re.compile(r"(\d{1,3})\s*a(?:ñ|n)os?\b", re.IGNORECASE)
_MONTHS_RE = re.compile(r"(\d{1,3})\s*mes(?:es)?\b", re.IGNORECASE)
_DMY_RE = re.compile(r"\b(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{4})\b")
_YMD_RE = re.compile(r"\b(\d{4})-(\d{1,2})-(\d{1,2})\b")
_IBAN_ES_RE = re.compile(r"^ES\d{22}$")


def _to_decimal(text: str) -> Decimal | None:
    try:
        return Decimal(text)
    except InvalidOperation:
        return None


def parse_spanish_number(text: str) -> Decimal | None:
    """Parse a Spanish-formatted number (``1.234,56`` -> ``1234.56``).

    Dots and spaces are thousands separators; the comma is the decimal
    mark. Returns ``None`` when the text holds no number.
    """
    cleaned = re.sub(r"[\s.]", "", text.strip()).replace(",", ".")
    if not cleaned or not re.fullmatch(r"[+\-]?\d+(?:\.\d+)?", cleaned):
        return None
    return _to_decimal(cleaned)


def parse_money(text: str) -> Decimal | None:
    """Extract the first monetary figure from locale text.

    Args:
        text: Text such as ``"250.000,00 €"`` or ``"Importe 1.263,45"``.

    Returns:
        The amount as a ``Decimal``, or ``None`` if no figure is present.
    """
    match = _MONEY_RE.search(text)
    if not match:
        return None
    return parse_spanish_number(match.group(1))


def parse_percentage(text: str) -> Decimal | None:
    """Extract a percentage figure (``"3,45 %"`` -> ``3.45``).

    A lone dot is read as a decimal point, since rates never need a
    thousands separator.
    """
    match = _PERCENT_RE.search(text)
    if not match:
        return None
    raw = match.group(1)
    if "," in raw:
        raw = raw.replace(".", "").replace(",", ".")
    return _to_decimal(raw)


def parse_term_months(text: str) -> int | None:
    """Convert a term expression to whole months.

    ``"25 años"`` -> 300, ``"180 meses"`` -> 180. Years take precedence
    when both units appear.
    """
    years = _YEARS_RE.search(text)
    if years:
        return int(years.group(1)) * 12
    months = _MONTHS_RE.search(text)
    if months:
        return int(months.group(1))
    return None


def parse_date(text: str) -> date | None:
    """Parse ``DD/MM/YYYY``, ``DD-MM-YYYY`` or ISO ``YYYY-MM-DD`` dates."""
    iso = _YMD_RE.search(text)
    if iso:
        year, month, day = (int(g) for g in iso.groups())
    else:
        dmy = _DMY_RE.search(text)
        if not dmy:
            return None
        day, month, year = (int(g) for g in dmy.groups())
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _group_thousands(amount: Decimal) -> str:
    english = f"{abs(amount):,.2f}"
    spanish = english.replace(",", "\x00").replace(".", ",").replace("\x00", ".")
    return f"-{spanish}" if amount < 0 else spanish


def format_money(amount: Decimal) -> str:
    """Render an amount as ``"250.000,00 €"``."""
    quantized = Decimal(amount).quantize(_CENT, rounding=ROUND_HALF_UP)
    return f"{_group_thousands(quantized)} €"


def format_percentage(rate: Decimal) -> str:
    """Render a rate as ``"3,25 %"``."""
    quantized = Decimal(rate).quantize(_CENT, rounding=ROUND_HALF_UP)
    text = f"{abs(quantized):.2f}".replace(".", ",")
    return f"-{text} %" if quantized < 0 else f"{text} %"


def format_differential(rate: Decimal) -> str:
    """Render a spread with an explicit sign, e.g. ``"+1,50 %"``."""
    formatted = format_percentage(rate)
    return formatted if rate < 0 else f"+{formatted}"


def format_date(value: date) -> str:
    """Render a date as ``DD/MM/YYYY``."""
    return value.strftime("%d/%m/%Y")


def group_blocks(text: str, width: int = 4) -> str:
    """Re-group a compact account string into fixed-width blocks."""
    return " ".join(text[i : i + width] for i in range(0, len(text), width))


def iban_checksum_valid(iban: str) -> bool:
    """Check an IBAN with the ISO 13616 mod-97 rule."""
    compact = re.sub(r"\s", "", iban).upper()
    if len(compact) < 5 or not compact.isalnum():
        return False
    rearranged = compact[4:] + compact[:4]
    digits = "".join(str(int(ch, 36)) for ch in rearranged)
    return int(digits) % 97 == 1


def normalize_account(text: str) -> str | None:
    """Normalize a Spanish IBAN or a masked partial account number.

    Full IBANs (``ES`` + 22 digits) and masked numbers such as
    ``ES12 **** **** 1234`` are both returned in blocks of four.

    Returns:
        The grouped account, or ``None`` if the text is neither.
    """
    compact = re.sub(r"\s", "", text).upper()
    if _IBAN_ES_RE.match(compact):
        return group_blocks(compact)
    if "*" in compact and len(compact) >= 4 and re.fullmatch(r"[A-Z0-9*]+", compact):
        return group_blocks(compact)
    return None
