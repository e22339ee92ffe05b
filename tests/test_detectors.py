"""Tests for the deterministic text-pattern detectors."""

from datetime import date
from decimal import Decimal

from loan_ocr.extraction.detectors import (
    Candidate,
    context_window,
    detect_account,
    detect_all,
    detect_expenses,
    detect_fees,
    detect_linked_products,
    detect_payment,
    detect_principal,
    detect_rate_type,
    detect_rates,
    detect_reference_index,
    detect_term,
    governing_label,
    pick_best,
)
from loan_ocr.extraction.fields import FlatFee


def _best(candidates: list[Candidate], key: str) -> Candidate | None:
    return pick_best(c for c in candidates if c.key == key)


class TestPickBest:
    """Tests for candidate selection."""

    def test_highest_score_wins(self) -> None:
        low = Candidate("apr", Decimal(3), 0.7, 0, "a")
        high = Candidate("apr", Decimal(4), 0.8, 50, "b")
        assert pick_best([low, high]) is high

    def test_tie_broken_by_first_occurrence(self) -> None:
        late = Candidate("apr", Decimal(4), 0.8, 50, "a")
        early = Candidate("apr", Decimal(3), 0.8, 10, "b")
        assert pick_best([late, early]) is early

    def test_same_offset_broken_by_rule_order(self) -> None:
        second = Candidate("apr", Decimal(4), 0.8, 10, "b", seq=1)
        first = Candidate("apr", Decimal(3), 0.8, 10, "a", seq=0)
        assert pick_best([second, first]) is first
        assert pick_best([first, second]) is first

    def test_implausible_and_negative_discarded(self) -> None:
        candidates = [
            Candidate("apr", Decimal(40), 0.9, 0, "a", plausible=False),
            Candidate("apr", Decimal(3), -0.2, 5, "b"),
        ]
        assert pick_best(candidates) is None

    def test_empty(self) -> None:
        assert pick_best([]) is None


class TestContext:
    """Tests for the context window helpers."""

    def test_window_stays_on_line(self) -> None:
        text = "Valor de tasación: 1 €\nCapital solicitado: 2 €"
        start = text.index("2 €")
        ctx = context_window(text, start, start + 3)
        assert ctx.before == "capital solicitado: "

    def test_bare_value_borrows_previous_line(self) -> None:
        text = "Capital solicitado\n250.000,00 €"
        start = text.index("250")
        assert "capital solicitado" in context_window(text, start, len(text)).before

    def test_governing_label_is_closest(self) -> None:
        before = "importe del préstamo y valor de tasación: "
        assert governing_label(before, ["importe del préstamo"], ["valor de tasación"]) == (
            "valor de tasación",
            True,
        )
        assert governing_label("nada", ["capital"], ["tasación"]) is None


class TestPrincipal:
    """Tests for the principal amount detector."""

    def test_appraisal_value_never_wins(self) -> None:
        text = "Capital solicitado: 250.000,00 €\nValor de tasación: 500.000,00 €"
        best = _best(detect_principal(text), "principal_amount")
        assert best is not None
        assert best.value == Decimal("250000.00")

    def test_appraisal_first_in_text(self) -> None:
        text = "Valor de tasación: 500.000,00 €\nCapital solicitado: 250.000,00 €"
        assert _best(detect_principal(text), "principal_amount").value == Decimal("250000.00")

    def test_same_line(self) -> None:
        text = "Capital solicitado 250.000,00 € Valor de tasación 500.000,00 €"
        candidates = detect_principal(text)
        assert _best(candidates, "principal_amount").value == Decimal("250000.00")
        excluded = [c for c in candidates if c.rule == "capital_exclusion"]
        assert [c.value for c in excluded] == [Decimal("500000.00")]
        assert excluded[0].score < 0

    def test_only_appraisal(self) -> None:
        candidates = detect_principal("Valor de tasación: 500.000,00 €")
        assert _best(candidates, "principal_amount") is None

    def test_loan_word_bonus(self) -> None:
        text = "Importe del préstamo: 180.000 €"
        best = _best(detect_principal(text), "principal_amount")
        assert best.value == Decimal("180000")
        assert best.score == 1.0

    def test_out_of_range(self) -> None:
        assert _best(detect_principal("Capital solicitado: 900 €"), "principal_amount") is None


class TestOtherDetectors:
    """Tests for the remaining single-field detectors."""

    def test_term_in_years(self) -> None:
        best = _best(detect_term("Plazo: 25 años"), "term_months")
        assert best.value == 300
        assert best.rule == "plazo_anos"

    def test_term_in_months(self) -> None:
        assert _best(detect_term("Duración del préstamo: 240 meses"), "term_months").value == 240

    def test_rates(self) -> None:
        candidates = detect_rates("TIN: 3,50 %\nTAE: 3,85 %\nDiferencial: 0,99 %")
        assert _best(candidates, "nominal_rate").value == Decimal("3.50")
        assert _best(candidates, "apr").value == Decimal("3.85")
        assert _best(candidates, "spread").value == Decimal("0.99")

    def test_spread_from_index_formula(self) -> None:
        candidates = detect_rates("Euríbor 12 meses + 0,99 %")
        best = _best(candidates, "spread")
        assert best.value == Decimal("0.99")
        assert best.rule == "indice_mas_diferencial"

    def test_implausible_rate(self) -> None:
        assert _best(detect_rates("TIN: 45,00 %"), "nominal_rate") is None

    def test_payment_prefers_monthly(self) -> None:
        text = "Cuota: 300,00 €\nCuota mensual: 1.251,56 €"
        best = _best(detect_payment(text), "payment")
        assert best.value == Decimal("1251.56")
        assert best.rule == "cuota_mensual"

    def test_explicit_rate_type_beats_index_hint(self) -> None:
        text = "Índice de referencia: Euríbor\nTipo de interés: Fijo"
        assert _best(detect_rate_type(text), "rate_type").value == "FIJO"

    def test_rate_type_implied_by_index(self) -> None:
        assert _best(detect_rate_type("Euríbor + 1 %"), "rate_type").value == "VARIABLE"

    def test_reference_index(self) -> None:
        assert _best(detect_reference_index("Euríbor a 6 meses"), "reference_index").value == (
            "EURIBOR_6M"
        )
        assert _best(detect_reference_index("IRPH"), "reference_index").value == "IRPH"

    def test_valid_iban(self) -> None:
        best = _best(detect_account("IBAN ES91 2100 0418 4502 0005 1332"), "debit_account")
        assert best.value == "ES91 2100 0418 4502 0005 1332"
        assert best.rule == "iban"

    def test_masked_account_needs_label(self) -> None:
        assert detect_account("Referencia ES12 **** **** 1234") == []
        best = _best(detect_account("Cuenta de cargo: ES12 **** **** 1234"), "debit_account")
        assert best.value == "ES12 **** **** 1234"


class TestGroupedDetectors:
    """Tests for fees, expenses and linked products."""

    def test_fee_percentage_and_flat(self) -> None:
        candidates = detect_fees("Comisión de apertura: 0,50 %\nSubrogación: 150,00 €")
        assert _best(candidates, "fees.apertura").value == Decimal("0.50")
        assert _best(candidates, "fees.subrogacion").value == FlatFee(Decimal("150.00"))

    def test_expenses(self) -> None:
        text = "Gastos de notaría: 850,00 €\nGastos de registro: 400,00 €"
        candidates = detect_expenses(text)
        assert _best(candidates, "expenses.notaria").value == Decimal("850.00")
        assert _best(candidates, "expenses.registro").value == Decimal("400.00")

    def test_valuation_is_not_an_expense(self) -> None:
        candidates = detect_expenses("Valor de tasación: 9.000,00 €")
        assert _best(candidates, "expenses.tasacion") is None

    def test_linked_products_under_heading(self) -> None:
        text = "Bonificaciones\nNómina: -0,50 %\nSeguro de hogar: -0,25 %\n\nTarjeta de crédito"
        candidates = detect_linked_products(text)
        assert _best(candidates, "linked_products.nomina").value == Decimal("0.50")
        assert _best(candidates, "linked_products.seguro_hogar").value == Decimal("0.25")
        assert _best(candidates, "linked_products.tarjeta") is None

    def test_products_on_one_line(self) -> None:
        candidates = detect_linked_products("Bonificación por nómina 0,10 % y tarjeta 0,05 %")
        assert _best(candidates, "linked_products.nomina").value == Decimal("0.10")
        assert _best(candidates, "linked_products.tarjeta").value == Decimal("0.05")


class TestDetectAll:
    """Tests for running every detector over a full document."""

    def test_full_document(self, sample_text: str) -> None:
        grouped = detect_all(sample_text)
        best = {key: pick_best(cands) for key, cands in grouped.items()}
        assert best["principal_amount"].value == Decimal("250000.00")
        assert best["term_months"].value == 300
        assert best["nominal_rate"].value == Decimal("3.50")
        assert best["apr"].value == Decimal("3.85")
        assert best["payment"].value == Decimal("1251.56")
        assert best["rate_type"].value == "VARIABLE"
        assert best["reference_index"].value == "EURIBOR_12M"
        assert best["spread"].value == Decimal("0.99")
        assert best["amortization_system"].value == "FRANCES"
        assert best["offer_date"].value == date(2024, 3, 15)
        assert best["valid_until"].value == date(2024, 4, 15)
        assert best["fees.apertura"].value == Decimal("0.50")
        assert best["expenses.notaria"].value == Decimal("850.00")
        assert best["linked_products.nomina"].value == Decimal("0.50")
        assert best["debit_account"].rule == "iban"
        assert best.get("expenses.tasacion") is None
