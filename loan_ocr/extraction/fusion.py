"""Field fusion: structured entities first, text patterns second.

Fields come from two independent evidence sources. Backend entities
supply a value with their own confidence; deterministic text patterns
fill whatever is still missing with a confidence held inside a lower
band. Coherence rules then adjust confidences, a global confidence is
computed over the critical fields, and low-confidence or missing
critical fields are listed for review.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from loan_ocr.ocr.entities import DateValue, Entity, EntityKind, MoneyValue, TextValue
from loan_ocr.pipeline.aggregator import AggregatedDocument
from loan_ocr.utils.config import NormalizationConfig
from loan_ocr.utils.locale import (
    normalize_account,
    parse_date,
    parse_money,
    parse_percentage,
    parse_term_months,
)
from loan_ocr.utils.logger import get_logger
from loan_ocr.validation.rules_engine import RulesEngine

from .detectors import detect_all, pick_best
from .fields import (
    EXPENSES_GROUP,
    FEES_GROUP,
    FIELD_SPECS,
    LINKED_PRODUCTS_GROUP,
    PENDING_FIELDS,
    RATE_FIXED,
    FieldValue,
    FlatFee,
    expense_kind,
    fee_kind,
    group_key,
    linked_product_mentions,
    make_field,
    normalize_amortization,
    normalize_index,
    normalize_rate_type,
)

logger = get_logger(__name__)

_KEY_BY_KIND = {spec.entity_kind: key for key, spec in FIELD_SPECS.items()}
_INDEX_AND_SPREAD = ("reference_index", "spread")


@dataclass
class NormalizationResult:
    """Normalized field set for one document."""

    fields: dict[str, FieldValue]
    confidence_global: float
    pending: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready view: display values, per-field evidence, summary."""
        return {
            "fields": {key: fv.display for key, fv in self.fields.items()},
            "by_field": {
                key: {"confidence": round(fv.confidence, 2), "source": fv.source}
                for key, fv in self.fields.items()
            },
            "confidence_global": self.confidence_global,
            "pending": list(self.pending),
            "warnings": list(self.warnings),
        }


def _entity_text(entity: Entity) -> str:
    if isinstance(entity.normalized_value, TextValue):
        return f"{entity.normalized_value.text} {entity.mention_text}"
    return entity.mention_text


def _money(entity: Entity) -> Decimal | None:
    if isinstance(entity.normalized_value, MoneyValue):
        return entity.normalized_value.amount
    return parse_money(_entity_text(entity))


def _percentage(entity: Entity) -> Decimal | None:
    return parse_percentage(_entity_text(entity))


def _term(entity: Entity) -> int | None:
    months = parse_term_months(entity.mention_text)
    if months is not None:
        return months
    number = parse_money(_entity_text(entity))
    if number is None:
        return None
    # A bare number above 50 is a month count, otherwise a year count.
    n = int(number)
    return n if n > 50 else n * 12


def _date(entity: Entity) -> date | None:
    if isinstance(entity.normalized_value, DateValue):
        return entity.normalized_value.value
    return parse_date(_entity_text(entity))


def entity_to_fields(entity: Entity) -> list[tuple[str, Any]]:
    """Map one entity to ``(field key, value)`` pairs.

    Most entities yield one pair; a linked-product entity naming several
    products yields one per product. Unrecognized kinds and unusable
    values yield nothing.
    """
    kind = entity.kind
    if kind == EntityKind.UNRECOGNIZED:
        return []

    if kind == EntityKind.FEE:
        text = _entity_text(entity)
        key = group_key(FEES_GROUP, fee_kind(entity.type, text))
        if "%" in text:
            rate = _percentage(entity)
            return [(key, rate)] if rate is not None else []
        amount = _money(entity)
        return [(key, FlatFee(amount))] if amount is not None else []

    if kind == EntityKind.EXPENSE:
        amount = _money(entity)
        key = group_key(EXPENSES_GROUP, expense_kind(entity.type, _entity_text(entity)))
        return [(key, amount)] if amount is not None else []

    if kind == EntityKind.LINKED_PRODUCT:
        text = _entity_text(entity)
        discount = _percentage(entity) if "%" in text else None
        return [
            (group_key(LINKED_PRODUCTS_GROUP, product), discount)
            for _, product in linked_product_mentions(text)
        ]

    key = _KEY_BY_KIND[kind]
    if kind in (EntityKind.PRINCIPAL, EntityKind.PAYMENT):
        value: Any = _money(entity)
    elif kind == EntityKind.TERM:
        value = _term(entity)
    elif kind in (EntityKind.NOMINAL_RATE, EntityKind.APR, EntityKind.SPREAD):
        value = _percentage(entity)
    elif kind == EntityKind.RATE_TYPE:
        value = normalize_rate_type(_entity_text(entity))
    elif kind == EntityKind.AMORTIZATION:
        value = normalize_amortization(_entity_text(entity))
    elif kind == EntityKind.REFERENCE_INDEX:
        value = normalize_index(_entity_text(entity))
    elif kind in (EntityKind.OFFER_DATE, EntityKind.VALID_UNTIL):
        value = _date(entity)
    elif kind == EntityKind.ACCOUNT:
        value = normalize_account(entity.mention_text)
    else:
        value = None
    return [(key, value)] if value is not None else []


def offer(fields: dict[str, FieldValue], candidate: FieldValue) -> bool:
    """Store ``candidate`` unless an equal or stronger source holds the key.

    The first entity-sourced value wins; an entity-sourced value replaces
    a pattern-sourced one; a pattern-sourced value only fills a gap.

    Returns:
        True if the candidate was stored.
    """
    current = fields.get(candidate.key)
    if current is None or (candidate.from_entity and not current.from_entity):
        fields[candidate.key] = candidate
        return True
    return False


def global_confidence(
    fields: Mapping[str, FieldValue],
    weights: Mapping[str, float],
    floor: float,
    ceiling: float,
) -> float:
    """Weighted average confidence over the critical fields present.

    Missing fields leave both numerator and denominator. When no
    contributing field came from an entity the result is clamped into
    ``[floor, ceiling]``. Rounded to two decimals.
    """
    present = [(fields[key], weight) for key, weight in weights.items() if key in fields]
    total_weight = sum(weight for _, weight in present)
    if not present or total_weight <= 0:
        return 0.0

    score = sum(fv.confidence * weight for fv, weight in present) / total_weight
    if not any(fv.from_entity for fv, _ in present):
        score = min(max(score, floor), ceiling)
    return round(score, 2)


def pending_fields(
    fields: Mapping[str, FieldValue], threshold: float, max_pending: int
) -> list[str]:
    """Labels of critical fields that are missing or below ``threshold``.

    A fixed-rate loan is not expected to have an index or spread, so
    their absence is not flagged; a low-confidence one still is.
    """
    rate_type = fields.get("rate_type")
    fixed = rate_type is not None and rate_type.value == RATE_FIXED

    pending: list[str] = []
    for key, label in PENDING_FIELDS:
        fv = fields.get(key)
        if fv is None:
            if fixed and key in _INDEX_AND_SPREAD:
                continue
            pending.append(label)
        elif fv.confidence < threshold:
            pending.append(label)
    return pending[:max_pending]


def _ordered(fields: Mapping[str, FieldValue]) -> dict[str, FieldValue]:
    known = [key for key in FIELD_SPECS if key in fields]
    grouped = sorted(key for key in fields if key not in FIELD_SPECS)
    return {key: fields[key] for key in known + grouped}


class FieldNormalizer:
    """Fuses entities and text patterns into a normalized field set.

    Args:
        config: Confidence band, pending threshold and critical weights.
        rules_engine: Coherence rules applied after both passes.
    """

    def __init__(self, config: NormalizationConfig, rules_engine: RulesEngine) -> None:
        self.config = config
        self.rules_engine = rules_engine

    def _pattern_confidence(self, score: float) -> float:
        cfg = self.config
        return min(max(score, cfg.pattern_confidence_floor), cfg.pattern_confidence_ceiling)

    def entity_pass(self, entities: Iterable[Entity], fields: dict[str, FieldValue]) -> list[str]:
        """Offer every recognized entity; returns the keys it filled."""
        filled: list[str] = []
        for entity in entities:
            for key, value in entity_to_fields(entity):
                fv = make_field(key, value, entity.confidence, f"entity:{entity.type}")
                if offer(fields, fv):
                    filled.append(key)
        return filled

    def pattern_pass(self, text: str, fields: dict[str, FieldValue]) -> list[str]:
        """Fill gaps from the best text-pattern candidate per field."""
        filled: list[str] = []
        if not text:
            return filled
        for key, candidates in detect_all(text).items():
            if key in fields:
                continue
            best = pick_best(candidates)
            if best is None:
                continue
            fv = make_field(
                key, best.value, self._pattern_confidence(best.score), f"pattern:{best.rule}"
            )
            if offer(fields, fv):
                filled.append(key)
        return filled

    def normalize(self, document: AggregatedDocument) -> NormalizationResult:
        """Build the normalized field set for an aggregated document."""
        fields: dict[str, FieldValue] = {}
        from_entities = self.entity_pass(document.entities, fields)
        from_patterns = self.pattern_pass(document.text, fields)
        logger.info(
            "Fields from entities: %s; from patterns: %s",
            ", ".join(from_entities) or "-",
            ", ".join(from_patterns) or "-",
        )

        report = self.rules_engine.validate(fields)
        for key, confidence in report.field_confidences.items():
            if confidence != fields[key].confidence:
                fields[key] = fields[key].with_confidence(confidence)

        cfg = self.config
        result = NormalizationResult(
            fields=_ordered(fields),
            confidence_global=global_confidence(
                fields,
                cfg.critical_weights,
                cfg.pattern_confidence_floor,
                cfg.pattern_confidence_ceiling,
            ),
            pending=pending_fields(fields, cfg.pending_threshold, cfg.max_pending),
            warnings=report.warnings,
        )
        logger.info(
            "Normalized %d fields, global confidence %.2f, %d pending",
            len(result.fields),
            result.confidence_global,
            len(result.pending),
        )
        return result
