"""Configurable coherence rules for extracted loan fields.

Field-level plausibility checks (amount, percentage and term ranges,
IBAN checksum) and cross-field rules (APR not below the nominal rate,
fixed-rate loans without a spread, variable-rate loans with an index).
A failed check never removes a field: it multiplies the field's
confidence by the rule's factor and records a warning.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path

import yaml

from loan_ocr.extraction.fields import RATE_FIXED, RATE_VARIABLE, FieldValue, label_for
from loan_ocr.utils.locale import iban_checksum_valid
from loan_ocr.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class ValidationResult:
    """Result of a single validation check."""

    field_name: str
    is_valid: bool
    message: str
    rule_name: str
    factor: float = 1.0


@dataclass
class ValidationReport:
    """Aggregated validation report for a document."""

    all_valid: bool
    results: list[ValidationResult]
    warnings: list[str] = field(default_factory=list)
    field_confidences: dict[str, float] = field(default_factory=dict)


FieldRule = Callable[[str, FieldValue, dict], ValidationResult]
CrossRule = Callable[[Mapping[str, FieldValue], dict], list[ValidationResult]]


class RulesEngine:
    """Applies coherence rules loaded from a YAML file.

    Args:
        rules_path: Path to the validation rules YAML file. Built-in
            defaults are used when it does not exist.
    """

    def __init__(self, rules_path: Path = Path("configs/validation_rules.yaml")) -> None:
        self.rules = self._load_rules(Path(rules_path))
        self._field_validators: dict[str, FieldRule] = {
            "amount_range": self._validate_range,
            "percentage_range": self._validate_range,
            "term_range": self._validate_range,
            "iban": self._validate_iban,
        }
        self._cross_validators: dict[str, CrossRule] = {
            "not_less_than": self._validate_not_less_than,
            "fixed_rate_spread": self._validate_fixed_rate_spread,
            "variable_rate_index": self._validate_variable_rate_index,
        }

    def _load_rules(self, path: Path) -> dict:
        """Load validation rules from YAML file.

        Args:
            path: Path to the rules file.

        Returns:
            Dictionary with ``fields`` and ``cross_field`` sections.
        """
        if path.exists():
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
                if data:
                    logger.info("Loaded validation rules from %s", path)
                    return data
        logger.debug("Using default validation rules")
        return self._default_rules()

    def _default_rules(self) -> dict:
        """Provide the built-in rules when no config is available.

        Returns:
            Default rules dictionary.
        """
        return {
            "fields": {
                "principal_amount": [
                    {"type": "amount_range", "min": 5000, "max": 3000000, "factor": 0.7}
                ],
                "payment": [{"type": "amount_range", "min": 50, "max": 5000, "factor": 0.7}],
                "term_months": [{"type": "term_range", "min": 12, "max": 600, "factor": 0.7}],
                "nominal_rate": [
                    {"type": "percentage_range", "min": 0, "max": 15, "factor": 0.7}
                ],
                "apr": [{"type": "percentage_range", "min": 0, "max": 20, "factor": 0.7}],
                "spread": [{"type": "percentage_range", "min": -1, "max": 10, "factor": 0.7}],
                "debit_account": [{"type": "iban", "factor": 0.8}],
            },
            "cross_field": [
                {"type": "not_less_than", "field": "apr", "other": "nominal_rate", "factor": 0.8},
                {"type": "fixed_rate_spread", "factor": 0.5},
                {"type": "variable_rate_index"},
            ],
        }

    def validate(self, fields: Mapping[str, FieldValue]) -> ValidationReport:
        """Check extracted fields and compute adjusted confidences.

        Args:
            fields: Extracted fields by key.

        Returns:
            Validation report whose ``field_confidences`` hold the
            adjusted confidence of every field.
        """
        results: list[ValidationResult] = []
        warnings: list[str] = []
        adjusted = {key: fv.confidence for key, fv in fields.items()}

        for field_name, rules in (self.rules.get("fields") or {}).items():
            value = fields.get(field_name)
            if value is None:
                continue
            for rule in rules:
                validator = self._field_validators.get(rule.get("type"))
                if not validator:
                    logger.warning("Unknown rule type: %s", rule.get("type"))
                    continue
                results.append(validator(field_name, value, rule))

        for rule in self.rules.get("cross_field") or []:
            validator = self._cross_validators.get(rule.get("type"))
            if not validator:
                logger.warning("Unknown cross-field rule type: %s", rule.get("type"))
                continue
            results.extend(validator(fields, rule))

        for result in results:
            if result.is_valid:
                continue
            if result.message not in warnings:
                warnings.append(result.message)
            if result.field_name in adjusted and result.factor != 1.0:
                adjusted[result.field_name] = max(
                    0.0, min(1.0, adjusted[result.field_name] * result.factor)
                )

        all_valid = all(r.is_valid for r in results)
        logger.info(
            "Coherence validation: %s (%d checks, %d warnings)",
            "PASSED" if all_valid else "FAILED",
            len(results),
            len(warnings),
        )
        return ValidationReport(
            all_valid=all_valid,
            results=results,
            warnings=warnings,
            field_confidences=adjusted,
        )

    def _validate_range(
        self, field_name: str, value: FieldValue, rule: dict
    ) -> ValidationResult:
        """Check that a numeric field lies within ``[min, max]``."""
        rule_name = rule["type"]
        number = value.numeric()
        if number is None:
            return ValidationResult(field_name, True, "No numeric value", rule_name)
        try:
            low = Decimal(str(rule.get("min", 0)))
            high = Decimal(str(rule.get("max", 1_000_000)))
        except InvalidOperation:
            return ValidationResult(field_name, True, "Invalid rule bounds", rule_name)

        if low <= number <= high:
            return ValidationResult(field_name, True, "In valid range", rule_name)
        return ValidationResult(
            field_name,
            False,
            f"{label_for(field_name)} fuera del rango habitual",
            rule_name,
            float(rule.get("factor", 0.7)),
        )

    def _validate_iban(self, field_name: str, value: FieldValue, rule: dict) -> ValidationResult:
        """Check a full IBAN with the mod-97 rule. Masked numbers pass."""
        account = str(value.value)
        if "*" in account:
            return ValidationResult(field_name, True, "Partial account", "iban")
        if iban_checksum_valid(account):
            return ValidationResult(field_name, True, "Valid IBAN checksum", "iban")
        return ValidationResult(
            field_name,
            False,
            "Dígito de control del IBAN no válido",
            "iban",
            float(rule.get("factor", 0.8)),
        )

    def _validate_not_less_than(
        self, fields: Mapping[str, FieldValue], rule: dict
    ) -> list[ValidationResult]:
        """``field`` must not be below ``other`` (APR >= nominal rate).

        On violation the less confident of the two is reduced; on a tie
        ``field`` is.
        """
        name, other_name = rule["field"], rule["other"]
        value, other = fields.get(name), fields.get(other_name)
        if value is None or other is None:
            return []
        a, b = value.numeric(), other.numeric()
        if a is None or b is None:
            return []
        if a >= b:
            return [ValidationResult(name, True, f"{name} >= {other_name}", "not_less_than")]

        target = other_name if value.confidence > other.confidence else name
        return [
            ValidationResult(
                target,
                False,
                f"{label_for(name)} inferior a {label_for(other_name)}",
                "not_less_than",
                float(rule.get("factor", 0.8)),
            )
        ]

    def _validate_fixed_rate_spread(
        self, fields: Mapping[str, FieldValue], rule: dict
    ) -> list[ValidationResult]:
        """A fixed-rate loan should carry neither a spread nor an index."""
        rate_type = fields.get("rate_type")
        if rate_type is None or rate_type.value != RATE_FIXED or "spread" not in fields:
            return []
        factor = float(rule.get("factor", 0.5))
        message = "Diferencial detectado en un préstamo a tipo fijo"
        return [
            ValidationResult(key, False, message, "fixed_rate_spread", factor)
            for key in ("spread", "reference_index")
            if key in fields
        ]

    def _validate_variable_rate_index(
        self, fields: Mapping[str, FieldValue], rule: dict
    ) -> list[ValidationResult]:
        """A variable-rate loan should name its reference index."""
        rate_type = fields.get("rate_type")
        if rate_type is None or rate_type.value != RATE_VARIABLE:
            return []
        if "reference_index" in fields:
            return [
                ValidationResult("reference_index", True, "Index present", "variable_rate_index")
            ]
        return [
            ValidationResult(
                "reference_index",
                False,
                "Préstamo variable sin índice de referencia",
                "variable_rate_index",
                float(rule.get("factor", 1.0)),
            )
        ]
