"""Catalogue of extractable loan fields and their value vocabularies.

Single-valued fields have fixed keys (``principal_amount``). Fees,
expenses and linked-product discounts are grouped fields whose keys carry
a sub-kind (``fees.apertura``, ``expenses.notaria``,
``linked_products.nomina``).
"""

import re
from dataclasses import dataclass, replace
from decimal import Decimal
from enum import StrEnum
from typing import Any

from loan_ocr.ocr.entities import EntityKind
from loan_ocr.utils.locale import (
    format_date,
    format_differential,
    format_money,
    format_percentage,
)


class ValueKind(StrEnum):
    """How a field's value is typed and rendered."""

    MONEY = "money"
    PERCENT = "percent"
    DIFFERENTIAL = "differential"
    MONTHS = "months"
    DATE = "date"
    ACCOUNT = "account"
    CODE = "code"
    DISCOUNT = "discount"


@dataclass(frozen=True)
class FieldSpec:
    """Static description of one target field."""

    key: str
    label: str
    value_kind: ValueKind
    entity_kind: EntityKind
    critical: bool = False


FIELD_SPECS: dict[str, FieldSpec] = {
    spec.key: spec
    for spec in (
        FieldSpec("principal_amount", "Importe", ValueKind.MONEY, EntityKind.PRINCIPAL, True),
        FieldSpec("term_months", "Plazo", ValueKind.MONTHS, EntityKind.TERM, True),
        FieldSpec("nominal_rate", "TIN", ValueKind.PERCENT, EntityKind.NOMINAL_RATE, True),
        FieldSpec("apr", "TAE", ValueKind.PERCENT, EntityKind.APR, True),
        FieldSpec("payment", "Cuota", ValueKind.MONEY, EntityKind.PAYMENT, True),
        FieldSpec("rate_type", "Tipo de interés", ValueKind.CODE, EntityKind.RATE_TYPE),
        FieldSpec(
            "amortization_system", "Sistema amortización", ValueKind.CODE, EntityKind.AMORTIZATION
        ),
        FieldSpec(
            "reference_index", "Índice referencia", ValueKind.CODE, EntityKind.REFERENCE_INDEX
        ),
        FieldSpec("spread", "Diferencial", ValueKind.DIFFERENTIAL, EntityKind.SPREAD),
        FieldSpec("offer_date", "Fecha oferta", ValueKind.DATE, EntityKind.OFFER_DATE),
        FieldSpec("valid_until", "Validez", ValueKind.DATE, EntityKind.VALID_UNTIL),
        FieldSpec("debit_account", "Cuenta de cargo", ValueKind.ACCOUNT, EntityKind.ACCOUNT),
    )
}

FEES_GROUP = "fees"
EXPENSES_GROUP = "expenses"
LINKED_PRODUCTS_GROUP = "linked_products"

FEE_KINDS = ("apertura", "mantenimiento", "amortizacion_anticipada", "subrogacion", "otros")
EXPENSE_KINDS = ("tasacion", "notaria", "registro", "gestoria", "otros")

LINKED_PRODUCT_LABELS: dict[str, str] = {
    "NOMINA": "Nómina",
    "RECIBOS": "Recibos",
    "SEGURO_HOGAR": "Seguro hogar",
    "SEGURO_VIDA": "Seguro vida",
    "TARJETA": "Tarjeta",
    "PLAN_PENSIONES": "Plan pensiones",
    "ALARMA": "Alarma",
}

GROUP_LABELS = {
    FEES_GROUP: "Comisión",
    EXPENSES_GROUP: "Gasto",
    LINKED_PRODUCTS_GROUP: "Bonificación",
}

# Critical fields a reviewer must confirm, in display order.
PENDING_FIELDS: list[tuple[str, str]] = [
    ("principal_amount", "Importe"),
    ("term_months", "Plazo"),
    ("nominal_rate", "TIN"),
    ("apr", "TAE"),
    ("payment", "Cuota"),
    ("amortization_system", "Sistema amortización"),
    ("reference_index", "Índice referencia"),
    ("spread", "Diferencial"),
]

RATE_FIXED = "FIJO"
RATE_VARIABLE = "VARIABLE"
RATE_MIXED = "MIXTO"


@dataclass(frozen=True)
class FlatFee:
    """A fee charged as a fixed amount rather than a percentage."""

    amount: Decimal


def group_key(group: str, kind: str) -> str:
    return f"{group}.{kind.lower()}"


def value_kind_for(key: str) -> ValueKind:
    """Return how the field stored under ``key`` is rendered."""
    if key in FIELD_SPECS:
        return FIELD_SPECS[key].value_kind
    group = key.split(".", 1)[0]
    if group == EXPENSES_GROUP:
        return ValueKind.MONEY
    if group == LINKED_PRODUCTS_GROUP:
        return ValueKind.DISCOUNT
    if group == FEES_GROUP:
        return ValueKind.PERCENT
    raise KeyError(key)


def label_for(key: str) -> str:
    if key in FIELD_SPECS:
        return FIELD_SPECS[key].label
    group, _, kind = key.partition(".")
    if group == LINKED_PRODUCTS_GROUP:
        return LINKED_PRODUCT_LABELS.get(kind.upper(), kind)
    return f"{GROUP_LABELS.get(group, group)} {kind.replace('_', ' ')}"


def render(key: str, value: Any) -> str:
    """Render a field value with Spanish locale conventions.

    Fees may be a percentage (``Decimal``) or a ``FlatFee``.
    """
    if isinstance(value, FlatFee):
        return format_money(value.amount)

    kind = value_kind_for(key)
    if kind == ValueKind.MONEY:
        return format_money(value)
    if kind == ValueKind.PERCENT:
        return format_percentage(value)
    if kind == ValueKind.DIFFERENTIAL:
        return format_differential(value)
    if kind == ValueKind.MONTHS:
        return f"{int(value)} meses"
    if kind == ValueKind.DATE:
        return format_date(value)
    if kind == ValueKind.DISCOUNT:
        label = label_for(key)
        return f"{label} ({format_differential(-value)})" if value is not None else label
    return str(value)


@dataclass(frozen=True)
class FieldValue:
    """One normalized output field.

    ``source`` is ``entity:<backend type>`` or ``pattern:<rule>``.
    """

    key: str
    value: Any
    display: str
    confidence: float
    source: str

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence out of range for {self.key}: {self.confidence}")

    @property
    def from_entity(self) -> bool:
        return self.source.startswith("entity:")

    def with_confidence(self, confidence: float) -> "FieldValue":
        return replace(self, confidence=max(0.0, min(1.0, confidence)))

    def numeric(self) -> Decimal | None:
        """The value as a number, for cross-field comparisons."""
        if isinstance(self.value, Decimal):
            return self.value
        if isinstance(self.value, int) and not isinstance(self.value, bool):
            return Decimal(self.value)
        if isinstance(self.value, FlatFee):
            return self.value.amount
        return None


def make_field(key: str, value: Any, confidence: float, source: str) -> FieldValue:
    return FieldValue(key, value, render(key, value), confidence, source)


def normalize_rate_type(text: str) -> str | None:
    lower = text.lower()
    if "mixto" in lower:
        return RATE_MIXED
    if "variable" in lower:
        return RATE_VARIABLE
    if "fijo" in lower or "fixed" in lower:
        return RATE_FIXED
    return None


def normalize_amortization(text: str) -> str | None:
    lower = text.lower()
    if any(w in lower for w in ("francés", "frances", "french")):
        return "FRANCES"
    if any(w in lower for w in ("alemán", "aleman", "german")):
        return "ALEMAN"
    if "american" in lower:
        return "AMERICANO"
    return None


def normalize_index(text: str) -> str | None:
    """Map index wording to ``EURIBOR_12M``, ``EURIBOR_6M`` or ``IRPH``.

    Euríbor without an explicit tenor is the 12-month index.
    """
    lower = text.lower()
    if "euribor" in lower or "euríbor" in lower:
        if re.search(r"\b12\s*m|\b12\b|anual", lower):
            return "EURIBOR_12M"
        if re.search(r"\b6\s*m|\b6\b|semestral", lower):
            return "EURIBOR_6M"
        return "EURIBOR_12M"
    if "irph" in lower:
        return "IRPH"
    return None


def fee_kind(entity_type: str, text: str) -> str:
    lower = f"{entity_type} {text}".lower()
    if "apertura" in lower or "opening" in lower:
        return "apertura"
    if "mantenimiento" in lower or "maintenance" in lower:
        return "mantenimiento"
    if any(w in lower for w in ("amortización", "amortizacion", "prepayment", "reembolso")):
        return "amortizacion_anticipada"
    if any(w in lower for w in ("subrogación", "subrogacion", "subrogation")):
        return "subrogacion"
    return "otros"


def expense_kind(entity_type: str, text: str) -> str:
    lower = f"{entity_type} {text}".lower()
    if any(w in lower for w in ("tasación", "tasacion", "appraisal")):
        return "tasacion"
    if any(w in lower for w in ("notaría", "notaria", "notary")):
        return "notaria"
    if "registro" in lower or "registry" in lower:
        return "registro"
    if any(w in lower for w in ("gestoría", "gestoria", "management")):
        return "gestoria"
    return "otros"


# Checked in order so that "seguro de hogar" is not read as a bare card.
_PRODUCT_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("NOMINA", ("nómina", "nomina", "ingresos")),
    ("SEGURO_HOGAR", ("seguro hogar", "seguro de hogar", "seguro del hogar")),
    ("SEGURO_VIDA", ("seguro vida", "seguro de vida")),
    ("PLAN_PENSIONES", ("plan pensiones", "plan de pensiones")),
    ("RECIBOS", ("recibos", "domiciliación", "domiciliacion")),
    ("TARJETA", ("tarjeta",)),
    ("ALARMA", ("alarma",)),
]


def linked_product_mentions(text: str) -> list[tuple[int, str]]:
    """Linked products named in ``text`` as ``(offset, kind)``, by offset."""
    lower = text.lower()
    mentions = []
    for kind, words in _PRODUCT_KEYWORDS:
        offsets = [lower.find(w) for w in words if w in lower]
        if offsets:
            mentions.append((min(offsets), kind))
    return sorted(mentions)


def catalogue() -> list[dict[str, Any]]:
    """Describe every extractable field for API clients."""
    entries: list[dict[str, Any]] = [
        {
            "key": spec.key,
            "label": spec.label,
            "type": spec.value_kind.value,
            "critical": spec.critical,
        }
        for spec in FIELD_SPECS.values()
    ]
    for group, kinds in (
        (FEES_GROUP, FEE_KINDS),
        (EXPENSES_GROUP, EXPENSE_KINDS),
        (LINKED_PRODUCTS_GROUP, tuple(LINKED_PRODUCT_LABELS)),
    ):
        for kind in kinds:
            key = group_key(group, kind)
            entries.append(
                {
                    "key": key,
                    "label": label_for(key),
                    "type": value_kind_for(key).value,
                    "critical": False,
                }
            )
    return entries
