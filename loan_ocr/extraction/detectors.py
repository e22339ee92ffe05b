"""Deterministic text-pattern detectors for loan disclosure fields.

Each detector scans the full document text and returns every plausible
``Candidate`` for its field. Candidates are scored from a base score,
a bonus for a positive anchor phrase near the match and a penalty for an
exclusion phrase, and flagged implausible when the value falls outside a
sane range. ``pick_best`` then chooses one candidate per field with a
total order, so the outcome never depends on collection order.
"""

import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from loan_ocr.utils.locale import (
    iban_checksum_valid,
    normalize_account,
    parse_date,
    parse_percentage,
    parse_spanish_number,
)
from loan_ocr.utils.logger import get_logger

from .fields import (
    EXPENSES_GROUP,
    FEES_GROUP,
    LINKED_PRODUCTS_GROUP,
    FlatFee,
    group_key,
    linked_product_mentions,
    normalize_amortization,
    normalize_rate_type,
)

logger = get_logger(__name__)

# Label-to-value gap: anything on the same line except digits and units.
_GAP = r"[^\d\n%€]{0,40}?"
_PCT = r"(?P<pct>[+\-]?\s?\d{1,2}(?:[.,]\d{1,4})?)\s*%"
_AMOUNT = r"(?P<amount>\d{1,3}(?:[. \u00a0]\d{3})+(?:,\d{1,2})?|\d+(?:,\d{1,2})?)"
_EURO = _AMOUNT + r"\s*(?:€|eur(?:os)?\b)"
_DATE = r"(?P<date>\d{1,2}[/\-.]\d{1,2}[/\-.]\d{4}|\d{4}-\d{1,2}-\d{1,2})"

_EURO_RE = re.compile(_EURO, re.IGNORECASE)
_LETTER_RE = re.compile(r"[^\W\d_]")

PRINCIPAL_RANGE = (Decimal(5_000), Decimal(3_000_000))
TERM_RANGE = (12, 600)
NOMINAL_RATE_RANGE = (Decimal(0), Decimal(15))
APR_RANGE = (Decimal(0), Decimal(20))
PAYMENT_RANGE = (Decimal(50), Decimal(5_000))
SPREAD_RANGE = (Decimal(-1), Decimal(10))
FEE_PERCENT_RANGE = (Decimal(0), Decimal(10))
FEE_AMOUNT_RANGE = (Decimal(0), Decimal(10_000))
EXPENSE_RANGE = (Decimal(0), Decimal(10_000))
DISCOUNT_RANGE = (Decimal(0), Decimal(2))

PRINCIPAL_ANCHORS = (
    "capital solicitado",
    "capital del préstamo",
    "capital inicial",
    "importe del préstamo",
    "principal",
    "importe a financiar",
)
PRINCIPAL_EXCLUSIONS = (
    "valor de tasación",
    "valor del inmueble",
    "importe de tasación",
    "valor vivienda",
    "tasación",
)

ANCHOR_BONUS = 0.3
LOAN_WORD_BONUS = 0.2
EXCLUSION_PENALTY = 1.0


@dataclass(frozen=True)
class Candidate:
    """One plausible value for a field found in the text.

    ``position`` is the match offset in the text and ``seq`` the
    declaration order of the rule that produced it.
    """

    key: str
    value: Any
    score: float
    position: int
    rule: str
    seq: int = 0
    plausible: bool = True


def pick_best(candidates: Iterable[Candidate]) -> Candidate | None:
    """Choose the winning candidate.

    Implausible and negatively scored candidates are discarded. The rest
    are ordered by score (highest first), then text offset, then rule
    declaration order.
    """
    viable = [c for c in candidates if c.plausible and c.score >= 0]
    return min(viable, key=lambda c: (-c.score, c.position, c.seq), default=None)


@dataclass(frozen=True)
class Context:
    """Lower-cased text on either side of a match."""

    before: str
    after: str

    @property
    def text(self) -> str:
        return f"{self.before} {self.after}"


def context_window(
    text: str,
    start: int,
    end: int,
    left: int = 80,
    right: int = 80,
    floor: int = 0,
    ceiling: int | None = None,
) -> Context:
    """Fixed-width context around ``text[start:end]``.

    The window stays on the match's line, except that a value with no
    label before it on its line borrows the previous line. ``floor`` and
    ``ceiling`` stop the window at neighbouring matches.
    """
    line_start = text.rfind("\n", 0, start) + 1
    if line_start > 0 and not _LETTER_RE.search(text[line_start:start]):
        line_start = text.rfind("\n", 0, line_start - 1) + 1
    line_end = text.find("\n", end)
    if line_end < 0:
        line_end = len(text)

    lo = max(line_start, start - left, floor)
    hi = min(line_end, end + right, len(text) if ceiling is None else ceiling)
    return Context(text[lo:start].lower(), text[end:max(hi, end)].lower())


def governing_label(
    before: str, anchors: Iterable[str], exclusions: Iterable[str]
) -> tuple[str, bool] | None:
    """The anchor or exclusion phrase closest before a value.

    Returns:
        ``(phrase, is_exclusion)``, or ``None`` when neither occurs.
    """
    best: tuple[tuple[int, int], str, bool] | None = None
    for phrases, excluded in ((anchors, False), (exclusions, True)):
        for phrase in phrases:
            idx = before.rfind(phrase)
            if idx < 0:
                continue
            rank = (idx + len(phrase), len(phrase))
            if best is None or rank > best[0]:
                best = (rank, phrase, excluded)
    return (best[1], best[2]) if best else None


def _in_range(value: Decimal | int, bounds: tuple[Any, Any]) -> bool:
    low, high = bounds
    return low <= value <= high


def _pct(raw: str) -> Decimal | None:
    return parse_percentage(raw.replace(" ", "") + " %")


def detect_principal(text: str) -> list[Candidate]:
    """Loan amount candidates: euro figures labelled as the principal.

    Figures governed by an appraisal-style label are emitted with a net
    negative score, so they can never win.
    """
    candidates: list[Candidate] = []
    figures = list(_EURO_RE.finditer(text))
    for i, match in enumerate(figures):
        amount = parse_spanish_number(match.group("amount"))
        if amount is None:
            continue
        ctx = context_window(
            text,
            match.start(),
            match.end(),
            floor=figures[i - 1].end() if i else 0,
            ceiling=figures[i + 1].start() if i + 1 < len(figures) else None,
        )
        label = governing_label(ctx.before, PRINCIPAL_ANCHORS, PRINCIPAL_EXCLUSIONS)
        if label is None:
            continue
        excluded = label[1]

        score = 0.5 - EXCLUSION_PENALTY if excluded else 0.5 + ANCHOR_BONUS
        if "préstamo" in ctx.text or "prestamo" in ctx.text:
            score += LOAN_WORD_BONUS
        candidates.append(
            Candidate(
                key="principal_amount",
                value=amount,
                score=round(score, 2),
                position=match.start(),
                rule="capital_exclusion" if excluded else "capital",
                plausible=_in_range(amount, PRINCIPAL_RANGE),
            )
        )
    return candidates


_TERM_RE = re.compile(
    r"\b(?:plazo|duración)\b" + _GAP + r"(?P<n>\d{1,3})\s*(?P<unit>a[ñn]os?|mes(?:es)?)\b",
    re.IGNORECASE,
)


def detect_term(text: str) -> list[Candidate]:
    """Term candidates, always in months (years are multiplied by 12)."""
    candidates: list[Candidate] = []
    for match in _TERM_RE.finditer(text):
        n = int(match.group("n"))
        years = match.group("unit").lower().startswith("a")
        months = n * 12 if years else n
        candidates.append(
            Candidate(
                key="term_months",
                value=months,
                score=0.8,
                position=match.start(),
                rule="plazo_anos" if years else "plazo_meses",
                plausible=_in_range(months, TERM_RANGE),
            )
        )
    return candidates


_RATE_RULES: list[tuple[str, str, re.Pattern[str], tuple[Decimal, Decimal]]] = [
    (
        "nominal_rate",
        "tin",
        re.compile(r"\btin\b" + _GAP + _PCT, re.IGNORECASE),
        NOMINAL_RATE_RANGE,
    ),
    (
        "nominal_rate",
        "tipo_nominal",
        re.compile(
            r"\b(?:tipo\s+(?:de\s+interés\s+)?nominal|interés\s+nominal)\b" + _GAP + _PCT,
            re.IGNORECASE,
        ),
        NOMINAL_RATE_RANGE,
    ),
    (
        "apr",
        "tae",
        re.compile(r"\b(?:tae|tasa\s+anual\s+equivalente)\b" + _GAP + _PCT, re.IGNORECASE),
        APR_RANGE,
    ),
    (
        "spread",
        "diferencial",
        re.compile(r"\b(?:diferencial|margen|spread)\b" + _GAP + _PCT, re.IGNORECASE),
        SPREAD_RANGE,
    ),
]

_INDEX_PLUS_RE = re.compile(
    r"eur[ií]bor[^\n%+\d]{0,20}(?:\d{1,2}\s*m(?:eses)?)?\s*\+\s*" + _PCT, re.IGNORECASE
)


def detect_rates(text: str) -> list[Candidate]:
    """Nominal rate, APR and spread candidates from labelled percentages."""
    candidates: list[Candidate] = []
    for seq, (key, rule, pattern, bounds) in enumerate(_RATE_RULES):
        for match in pattern.finditer(text):
            rate = _pct(match.group("pct"))
            if rate is None:
                continue
            candidates.append(
                Candidate(key, rate, 0.8, match.start(), rule, seq, _in_range(rate, bounds))
            )

    for match in _INDEX_PLUS_RE.finditer(text):
        rate = _pct(match.group("pct"))
        if rate is None:
            continue
        candidates.append(
            Candidate(
                "spread",
                rate,
                0.75,
                match.start(),
                "indice_mas_diferencial",
                len(_RATE_RULES),
                _in_range(rate, SPREAD_RANGE),
            )
        )
    return candidates


_PAYMENT_RE = re.compile(
    r"\b(?P<label>cuota(?:\s+mensual)?(?:\s+(?:aprox\.?|aproximada|estimada|inicial))?"
    r"|importe\s+de\s+(?:la\s+)?cuota)" + _GAP + _EURO,
    re.IGNORECASE,
)


def detect_payment(text: str) -> list[Candidate]:
    """Periodic payment candidates; a "mensual" label scores higher."""
    candidates: list[Candidate] = []
    for match in _PAYMENT_RE.finditer(text):
        amount = parse_spanish_number(match.group("amount"))
        if amount is None:
            continue
        monthly = "mensual" in match.group("label").lower()
        candidates.append(
            Candidate(
                key="payment",
                value=amount,
                score=0.8 if monthly else 0.7,
                position=match.start(),
                rule="cuota_mensual" if monthly else "cuota",
                seq=0 if monthly else 1,
                plausible=_in_range(amount, PAYMENT_RANGE),
            )
        )
    return candidates


_RATE_TYPE_RULES: list[tuple[str, float, re.Pattern[str]]] = [
    (
        "tipo_explicito",
        0.9,
        re.compile(r"tipo\s+de\s+interés\s*:?\s*(?P<kind>fijo|variable|mixto)\b", re.IGNORECASE),
    ),
    (
        "tipo",
        0.85,
        re.compile(
            r"\b(?:tipo|interés|préstamo)\s+(?P<kind>fijo|variable|mixto)\b", re.IGNORECASE
        ),
    ),
]
_VARIABLE_HINT_RE = re.compile(r"índice\s+de\s+referencia|eur[ií]bor", re.IGNORECASE)


def detect_rate_type(text: str) -> list[Candidate]:
    """Fixed, variable or mixed rate.

    An explicit statement wins over the variable rate implied by a
    reference index.
    """
    candidates: list[Candidate] = []
    for seq, (rule, score, pattern) in enumerate(_RATE_TYPE_RULES):
        for match in pattern.finditer(text):
            kind = normalize_rate_type(match.group("kind"))
            if kind:
                candidates.append(Candidate("rate_type", kind, score, match.start(), rule, seq))

    hint = _VARIABLE_HINT_RE.search(text)
    if hint:
        candidates.append(
            Candidate(
                "rate_type",
                "VARIABLE",
                0.7,
                hint.start(),
                "indice_referencia",
                len(_RATE_TYPE_RULES),
            )
        )
    return candidates


_EURIBOR_RE = re.compile(
    r"eur[ií]bor(?:\s+a)?(?:\s*(?P<tenor>\d{1,2})\s*(?:m\b|mes(?:es)?))?", re.IGNORECASE
)
_IRPH_RE = re.compile(r"\birph\b", re.IGNORECASE)


def detect_reference_index(text: str) -> list[Candidate]:
    """Reference index candidates; an explicit tenor scores higher."""
    candidates: list[Candidate] = []
    for match in _EURIBOR_RE.finditer(text):
        tenor = match.group("tenor")
        value = "EURIBOR_6M" if tenor == "6" else "EURIBOR_12M"
        candidates.append(
            Candidate(
                "reference_index",
                value,
                0.8 if tenor else 0.7,
                match.start(),
                "indice",
                plausible=tenor in (None, "6", "12"),
            )
        )
    for match in _IRPH_RE.finditer(text):
        candidates.append(Candidate("reference_index", "IRPH", 0.8, match.start(), "indice", 1))
    return candidates


_AMORTIZATION_RE = re.compile(
    r"(?:sistema\s+de\s+amortización|amortización|sistema)\s*:?\s*(?:de\s+)?"
    r"(?P<kind>franc[eé]s|alem[aá]n|americano)\b",
    re.IGNORECASE,
)


def detect_amortization(text: str) -> list[Candidate]:
    candidates: list[Candidate] = []
    for match in _AMORTIZATION_RE.finditer(text):
        system = normalize_amortization(match.group("kind"))
        if system:
            candidates.append(
                Candidate("amortization_system", system, 0.8, match.start(), "sistema")
            )
    return candidates


_IBAN_RE = re.compile(r"\bES\d{2}(?:[ ]?\d{4}){5}\b", re.IGNORECASE)
_MASKED_ACCOUNT_RE = re.compile(r"\bES[\d*]{2}(?:[ ]?[\d*]{4}){1,5}", re.IGNORECASE)


def detect_account(text: str) -> list[Candidate]:
    """Debit account candidates.

    A full IBAN with a valid checksum scores highest; masked partial
    numbers count only when labelled as an account.
    """
    candidates: list[Candidate] = []
    for match in _IBAN_RE.finditer(text):
        account = normalize_account(match.group(0))
        if account is None:
            continue
        valid = iban_checksum_valid(account)
        candidates.append(
            Candidate(
                "debit_account",
                account,
                0.9 if valid else 0.6,
                match.start(),
                "iban" if valid else "iban_sin_control",
            )
        )

    for match in _MASKED_ACCOUNT_RE.finditer(text):
        if "*" not in match.group(0):
            continue
        account = normalize_account(match.group(0))
        ctx = context_window(text, match.start(), match.end())
        if account is None or "cuenta" not in ctx.before:
            continue
        candidates.append(
            Candidate("debit_account", account, 0.7, match.start(), "cuenta_parcial", 1)
        )
    return candidates


_DATE_RULES: list[tuple[str, str, re.Pattern[str]]] = [
    (
        "offer_date",
        "fecha_oferta",
        re.compile(
            r"fecha\s+(?:de\s+(?:la\s+)?)?(?:oferta|emisión|entrega)" + _GAP + _DATE,
            re.IGNORECASE,
        ),
    ),
    (
        "valid_until",
        "validez",
        re.compile(
            r"(?:válid[ao]\s+hasta(?:\s+el)?|vigente\s+hasta(?:\s+el)?"
            r"|validez(?:\s+de\s+la\s+oferta)?(?:\s+hasta)?"
            r"|fecha\s+de\s+(?:validez|vencimiento|caducidad))" + _GAP + _DATE,
            re.IGNORECASE,
        ),
    ),
]


def detect_dates(text: str) -> list[Candidate]:
    candidates: list[Candidate] = []
    for seq, (key, rule, pattern) in enumerate(_DATE_RULES):
        for match in pattern.finditer(text):
            value = parse_date(match.group("date"))
            if value is not None:
                candidates.append(Candidate(key, value, 0.8, match.start(), rule, seq))
    return candidates


_FEE_LABELS: list[tuple[str, str]] = [
    ("apertura", r"comisi[oó]n\s+(?:de\s+)?apertura|\bapertura"),
    ("mantenimiento", r"comisi[oó]n\s+(?:de\s+)?mantenimiento"),
    (
        "amortizacion_anticipada",
        r"(?:amortizaci[oó]n|reembolso)\s+anticipad[ao](?:\s+(?:total|parcial))?",
    ),
    ("subrogacion", r"subrogaci[oó]n"),
]
_FEE_RULES = [
    (kind, re.compile(f"(?:{label})" + _GAP + f"(?:{_PCT}|{_EURO})", re.IGNORECASE))
    for kind, label in _FEE_LABELS
]


def detect_fees(text: str) -> list[Candidate]:
    """Fee candidates, as a percentage or a flat amount."""
    candidates: list[Candidate] = []
    for seq, (kind, pattern) in enumerate(_FEE_RULES):
        for match in pattern.finditer(text):
            if match.group("pct") is not None:
                rate = _pct(match.group("pct"))
                if rate is None:
                    continue
                value: Any = rate
                plausible = _in_range(rate, FEE_PERCENT_RANGE)
            else:
                amount = parse_spanish_number(match.group("amount"))
                if amount is None:
                    continue
                value = FlatFee(amount)
                plausible = _in_range(amount, FEE_AMOUNT_RANGE)
            candidates.append(
                Candidate(
                    group_key(FEES_GROUP, kind),
                    value,
                    0.8,
                    match.start(),
                    f"comision_{kind}",
                    seq,
                    plausible,
                )
            )
    return candidates


_EXPENSE_LABELS: list[tuple[str, str]] = [
    ("tasacion", r"(?:gastos?\s+de\s+)?tasaci[oó]n"),
    ("notaria", r"(?:gastos?\s+de\s+)?notar[ií]a"),
    ("registro", r"(?:gastos?\s+de\s+)?registro(?:\s+de\s+la\s+propiedad)?"),
    ("gestoria", r"(?:gastos?\s+de\s+)?gestor[ií]a"),
]
_EXPENSE_RULES = [
    (kind, re.compile(f"(?:{label})" + _GAP + _EURO, re.IGNORECASE))
    for kind, label in _EXPENSE_LABELS
]
_VALUE_PREFIX_RE = re.compile(r"(?:valor|importe|precio)\s+(?:de\s+(?:la\s+)?)?$")


def detect_expenses(text: str) -> list[Candidate]:
    """Expense candidates.

    "Valor de tasación" and similar property valuations are not an
    appraisal expense and are scored negative.
    """
    candidates: list[Candidate] = []
    for seq, (kind, pattern) in enumerate(_EXPENSE_RULES):
        for match in pattern.finditer(text):
            amount = parse_spanish_number(match.group("amount"))
            if amount is None:
                continue
            prefix = text[max(0, match.start() - 20) : match.start()].lower()
            excluded = bool(_VALUE_PREFIX_RE.search(prefix))
            candidates.append(
                Candidate(
                    group_key(EXPENSES_GROUP, kind),
                    amount,
                    0.8 - EXCLUSION_PENALTY if excluded else 0.8,
                    match.start(),
                    f"gasto_{kind}",
                    seq,
                    _in_range(amount, EXPENSE_RANGE),
                )
            )
    return candidates


_DISCOUNT_HEADER_RE = re.compile(
    r"bonificaci[oó]n|bonificad|vinculaci[oó]n|descuentos?\s+por|reducci[oó]n\s+del?\s+tipo",
    re.IGNORECASE,
)
_DISCOUNT_PCT_RE = re.compile(r"(?P<pct>\d{1,2}(?:[.,]\d{1,3})?)\s*%")
_SECTION_LINES = 8


def detect_linked_products(text: str) -> list[Candidate]:
    """Linked-product discounts ("bonificaciones").

    Products count when named on a discount line or on the lines just
    below a discount heading. The discount is the first percentage after
    the product name, before the next product.
    """
    candidates: list[Candidate] = []
    remaining = 0
    offset = 0
    for line in text.split("\n"):
        line_start = offset
        offset += len(line) + 1
        if not line.strip():
            remaining = 0
            continue
        if _DISCOUNT_HEADER_RE.search(line):
            remaining = _SECTION_LINES
        elif remaining:
            remaining -= 1
        else:
            continue

        products = linked_product_mentions(line)
        for n, (idx, kind) in enumerate(products):
            end = products[n + 1][0] if n + 1 < len(products) else len(line)
            pct_match = _DISCOUNT_PCT_RE.search(line, idx, end)
            if pct_match is None and len(products) == 1:
                pct_match = _DISCOUNT_PCT_RE.search(line)
            discount = _pct(pct_match.group("pct")) if pct_match else None
            candidates.append(
                Candidate(
                    group_key(LINKED_PRODUCTS_GROUP, kind),
                    discount,
                    0.8 if discount is not None else 0.7,
                    line_start + idx,
                    "bonificacion",
                    plausible=discount is None or _in_range(discount, DISCOUNT_RANGE),
                )
            )
    return candidates


Detector = Callable[[str], list[Candidate]]

DETECTORS: list[Detector] = [
    detect_principal,
    detect_term,
    detect_rates,
    detect_payment,
    detect_rate_type,
    detect_reference_index,
    detect_amortization,
    detect_account,
    detect_dates,
    detect_fees,
    detect_expenses,
    detect_linked_products,
]


def detect_all(text: str) -> dict[str, list[Candidate]]:
    """Run every detector and group the candidates by field key."""
    grouped: dict[str, list[Candidate]] = {}
    for detector in DETECTORS:
        for candidate in detector(text):
            grouped.setdefault(candidate.key, []).append(candidate)
    logger.debug(
        "Pattern detectors produced candidates for %d fields", len(grouped)
    )
    return grouped
