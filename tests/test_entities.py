"""Tests for the backend entity model."""

from datetime import date
from decimal import Decimal

import pytest

from loan_ocr.ocr.entities import (
    DateValue,
    Entity,
    EntityKind,
    MoneyValue,
    TextValue,
    classify_entity_type,
    parse_normalized_value,
)


class TestClassifyEntityType:
    """Tests for mapping backend type names to entity kinds."""

    @pytest.mark.parametrize(
        ("raw_type", "kind"),
        [
            ("loan_amount", EntityKind.PRINCIPAL),
            ("monthly_payment_amount", EntityKind.PAYMENT),
            ("interest_rate", EntityKind.NOMINAL_RATE),
            ("TAE", EntityKind.APR),
            ("rate_type", EntityKind.RATE_TYPE),
            ("referenceIndex", EntityKind.REFERENCE_INDEX),
            ("opening_fee", EntityKind.FEE),
            ("notary_expense", EntityKind.EXPENSE),
            ("linked_product", EntityKind.LINKED_PRODUCT),
            ("iban", EntityKind.ACCOUNT),
            ("offer_date", EntityKind.OFFER_DATE),
            ("term_months", EntityKind.TERM),
        ],
    )
    def test_known_types(self, raw_type: str, kind: EntityKind) -> None:
        assert classify_entity_type(raw_type) == kind

    def test_whole_tokens_only(self) -> None:
        assert classify_entity_type("appraisal_value") == EntityKind.UNRECOGNIZED

    def test_unknown_type(self) -> None:
        assert classify_entity_type("signature") == EntityKind.UNRECOGNIZED


class TestParseNormalizedValue:
    """Tests for the normalized value tagged union."""

    def test_money(self) -> None:
        value = parse_normalized_value(
            {"moneyValue": {"units": "250000", "nanos": 500000000, "currencyCode": "EUR"}}
        )
        assert value == MoneyValue(Decimal("250000.5"), "EUR")

    def test_date(self) -> None:
        value = parse_normalized_value({"dateValue": {"year": 2024, "month": 3, "day": 15}})
        assert value == DateValue(date(2024, 3, 15))

    def test_invalid_date_falls_back_to_text(self) -> None:
        value = parse_normalized_value(
            {"dateValue": {"year": 2024, "month": 13, "day": 1}, "text": "13/2024"}
        )
        assert value == TextValue("13/2024")

    def test_unusable(self) -> None:
        assert parse_normalized_value(None) is None
        assert parse_normalized_value({"text": "  "}) is None


class TestEntity:
    """Tests for building and shifting entities."""

    def test_from_payload(self) -> None:
        entity = Entity.from_payload(
            {
                "type": "loan_amount",
                "mentionText": "250.000,00 €",
                "confidence": 0.93,
                "pageAnchor": {"pageRefs": [{"page": "1"}, {}]},
            }
        )
        assert entity.kind == EntityKind.PRINCIPAL
        assert entity.mention_text == "250.000,00 €"
        assert entity.page_refs == (2, 1)

    def test_confidence_is_clamped(self) -> None:
        entity = Entity.from_payload({"type": "tin", "confidence": 1.7})
        assert entity.confidence == 1.0

    def test_missing_type_rejected(self) -> None:
        with pytest.raises(ValueError):
            Entity.from_payload({"mentionText": "x"})

    @pytest.mark.parametrize(
        "extra",
        [
            {"pageAnchor": "page 1"},
            {"pageAnchor": {"pageRefs": [0]}},
            {"pageRefs": {"page": 1}},
        ],
    )
    def test_page_reference_shape_rejected(self, extra: dict) -> None:
        with pytest.raises(ValueError):
            Entity.from_payload({"type": "tin", "confidence": 0.9, **extra})

    def test_flat_page_refs(self) -> None:
        entity = Entity.from_payload({"type": "tin", "pageRefs": [2, "3", "x"]})
        assert entity.page_refs == (2, 3)

    def test_shifted(self) -> None:
        entity = Entity(EntityKind.APR, "tae", "3,25 %", 0.9, page_refs=(1, 3))
        assert entity.shifted(15).page_refs == (16, 18)
        assert entity.shifted(0) is entity
