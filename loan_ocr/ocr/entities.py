"""Typed entities returned by the recognition backend.

Backend payloads are loosely typed JSON. They are converted here into
frozen ``Entity`` objects whose ``kind`` is one of a closed set of known
loan concepts, or ``UNRECOGNIZED`` for anything else. Normalized values
form a small tagged union: money, date, or plain text.
"""

import re
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import StrEnum
from typing import Any

_NANOS = Decimal(1_000_000_000)


class EntityKind(StrEnum):
    """Loan concepts the normalizer knows how to map to fields."""

    PRINCIPAL = "principal"
    TERM = "term"
    NOMINAL_RATE = "nominal_rate"
    APR = "apr"
    PAYMENT = "payment"
    RATE_TYPE = "rate_type"
    AMORTIZATION = "amortization"
    REFERENCE_INDEX = "reference_index"
    SPREAD = "spread"
    FEE = "fee"
    EXPENSE = "expense"
    OFFER_DATE = "offer_date"
    VALID_UNTIL = "valid_until"
    ACCOUNT = "account"
    LINKED_PRODUCT = "linked_product"
    UNRECOGNIZED = "unrecognized"


# Checked in order; the first kind with a matching alias wins, so more
# specific concepts precede the generic ones that share tokens with them.
_KIND_ALIASES: list[tuple[EntityKind, tuple[str, ...]]] = [
    (EntityKind.FEE, ("fee", "fees", "commission", "comision", "comisiones")),
    (EntityKind.EXPENSE, ("charges", "expense", "expenses", "gasto", "gastos")),
    (
        EntityKind.LINKED_PRODUCT,
        ("bonification", "bonifications", "discount", "discounts", "benefit",
         "benefits", "linked_product", "vinculacion", "vinculaciones"),
    ),
    (EntityKind.OFFER_DATE, ("offer_date", "date_offer", "fecha_oferta")),
    (EntityKind.VALID_UNTIL, ("valid_until", "expiry", "expiry_date", "validez")),
    (EntityKind.ACCOUNT, ("iban", "account_number", "debit_account", "cuenta_cargo")),
    (
        EntityKind.PAYMENT,
        ("monthly_payment", "payment", "installment", "cuota"),
    ),
    (EntityKind.APR, ("apr", "tae", "annual_percentage_rate")),
    (EntityKind.RATE_TYPE, ("rate_type", "interest_type", "tipo_interes")),
    (
        EntityKind.NOMINAL_RATE,
        ("interest_rate", "nominal_rate", "tin", "tipo_nominal"),
    ),
    (EntityKind.SPREAD, ("margin", "spread", "diferencial")),
    (EntityKind.REFERENCE_INDEX, ("index", "reference", "indice")),
    (EntityKind.AMORTIZATION, ("amortization", "amortization_type", "amortizacion")),
    (EntityKind.TERM, ("term", "term_months", "plazo", "plazo_meses")),
    (
        EntityKind.PRINCIPAL,
        ("loan_amount", "principal", "amount", "capital", "importe_prestamo"),
    ),
]


def _type_tokens(raw_type: str) -> str:
    """Render a type name as ``_tok_tok_`` for whole-token alias lookup."""
    snake = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", raw_type)
    tokens = [t for t in re.split(r"[^a-z0-9]+", snake.lower()) if t]
    return "_" + "_".join(tokens) + "_"


def classify_entity_type(raw_type: str) -> EntityKind:
    """Map a backend entity type name to a known kind.

    Matching is on whole tokens, so ``appraisal_value`` is not mistaken
    for an APR and ``monthly_payment_amount`` resolves to a payment.
    """
    joined = _type_tokens(raw_type)
    for kind, aliases in _KIND_ALIASES:
        if any(f"_{alias}_" in joined for alias in aliases):
            return kind
    return EntityKind.UNRECOGNIZED


@dataclass(frozen=True)
class MoneyValue:
    """A backend-normalized monetary amount."""

    amount: Decimal
    currency: str = "EUR"


@dataclass(frozen=True)
class DateValue:
    """A backend-normalized calendar date."""

    value: date


@dataclass(frozen=True)
class TextValue:
    """A backend-normalized free-text value."""

    text: str


NormalizedValue = MoneyValue | DateValue | TextValue


def parse_normalized_value(raw: Any) -> NormalizedValue | None:
    """Convert a backend ``normalizedValue`` object into the tagged union.

    Money and date payloads take precedence over the plain text rendering
    the backend attaches to most values. Unusable payloads yield ``None``.
    """
    if not isinstance(raw, dict):
        return None

    money = raw.get("moneyValue")
    if isinstance(money, dict):
        try:
            units = Decimal(str(money.get("units") or 0))
            nanos = Decimal(str(money.get("nanos") or 0)) / _NANOS
            return MoneyValue(units + nanos, str(money.get("currencyCode") or "EUR"))
        except InvalidOperation:
            pass

    date_value = raw.get("dateValue")
    if isinstance(date_value, dict):
        try:
            return DateValue(
                date(
                    int(date_value["year"]),
                    int(date_value["month"]),
                    int(date_value["day"]),
                )
            )
        except (KeyError, TypeError, ValueError):
            pass

    text = raw.get("text")
    if isinstance(text, str) and text.strip():
        return TextValue(text.strip())
    return None


@dataclass(frozen=True)
class Entity:
    """A typed span recognized by the backend.

    ``page_refs`` hold 1-based page numbers, local to the chunk the entity
    came from until the aggregator shifts them to document pages.
    """

    kind: EntityKind
    type: str
    mention_text: str
    confidence: float
    normalized_value: NormalizedValue | None = None
    page_refs: tuple[int, ...] = ()

    def shifted(self, offset: int) -> "Entity":
        """Return a copy with every page reference moved by ``offset``."""
        if not offset or not self.page_refs:
            return self
        return replace(self, page_refs=tuple(p + offset for p in self.page_refs))

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Entity":
        """Build an entity from one backend JSON object.

        The backend reports pages as zero-based indexes inside
        ``pageAnchor.pageRefs`` and omits the index for the first page.

        Raises:
            ValueError: If the payload lacks a type, has a non-numeric
                confidence, or carries page references of the wrong shape.
        """
        raw_type = payload.get("type")
        if not isinstance(raw_type, str) or not raw_type:
            raise ValueError("entity without type")
        try:
            confidence = float(payload.get("confidence", 0.0))
        except (TypeError, ValueError) as exc:
            raise ValueError(f"invalid confidence for entity {raw_type}") from exc

        return cls(
            kind=classify_entity_type(raw_type),
            type=raw_type,
            mention_text=str(payload.get("mentionText") or ""),
            confidence=max(0.0, min(1.0, confidence)),
            normalized_value=parse_normalized_value(payload.get("normalizedValue")),
            page_refs=_parse_page_refs(payload),
        )


def _parse_page_refs(payload: dict[str, Any]) -> tuple[int, ...]:
    """Collect 1-based page numbers from ``pageAnchor`` and flat ``pageRefs``.

    Unparseable page numbers are skipped; containers of the wrong shape
    raise ``ValueError``.
    """
    anchor = payload.get("pageAnchor") or {}
    if not isinstance(anchor, dict):
        raise ValueError("pageAnchor is not an object")
    anchored = anchor.get("pageRefs") or []
    flat = payload.get("pageRefs") or []
    if not isinstance(anchored, list) or not isinstance(flat, list):
        raise ValueError("pageRefs is not a list")

    refs: list[int] = []
    for ref in anchored:
        if not isinstance(ref, dict):
            raise ValueError("page reference is not an object")
        try:
            refs.append(int(ref.get("page") or 0) + 1)
        except (TypeError, ValueError):
            continue
    refs.extend(int(p) for p in flat if str(p).isdigit())
    return tuple(refs)
