"""
Denomination arithmetic tests.

Verifies:
- Canonical form (string keys accepted, zeros dropped, duplicates rejected)
- Subtraction never produces negative stock
- CashCount resolution and the zero-count confirmation rule
"""

import pytest

from vault_ledger.errors import IncompleteCount, InsufficientStock, InvalidDenomination
from vault_ledger.services import denominations as denoms
from vault_ledger.services.denominations import Breakdown, Total


FACES = (100, 50, 20, 10, 5, 1)


class TestCanonicalForm:
    def test_string_keys_and_zero_quantities(self):
        assert denoms.normalize({"100": 2, "20": 0, 5: "3"}) == {100: 2, 5: 3}

    def test_negative_quantity_rejected_for_stock(self):
        with pytest.raises(InvalidDenomination):
            denoms.normalize({20: -1})

    def test_negative_quantity_allowed_for_delta(self):
        assert denoms.normalize({20: -1}, signed=True) == {20: -1}

    @pytest.mark.parametrize("raw", [{0: 1}, {-5: 1}, {"abc": 1}, {20: 1.5}, {True: 1}])
    def test_bad_face_or_quantity(self, raw):
        with pytest.raises(InvalidDenomination):
            denoms.normalize(raw)

    def test_from_entries(self):
        entries = [
            {"denomination": 100, "quantity": 2},
            {"denomination": 20, "quantity": 1},
            {"denomination": 5, "quantity": 0},
        ]
        assert denoms.from_entries(entries) == {100: 2, 20: 1}

    def test_from_entries_duplicate_face(self):
        with pytest.raises(InvalidDenomination):
            denoms.from_entries([
                {"denomination": 20, "quantity": 1},
                {"denomination": 20, "quantity": 2},
            ])

    def test_to_entries_largest_first(self):
        assert denoms.to_entries({5: 3, 100: 2, 20: 1}) == [
            {"denomination": 100, "quantity": 2},
            {"denomination": 20, "quantity": 1},
            {"denomination": 5, "quantity": 3},
        ]


class TestArithmetic:
    def test_total_is_exact(self):
        # 2x100 + 1x20 + 3x5
        assert denoms.total({100: 2, 20: 1, 5: 3}) == 235

    def test_merge(self):
        assert denoms.merge({100: 1, 20: 2}, {20: 3, 5: 1}) == {100: 1, 20: 5, 5: 1}

    def test_merge_drops_cancelled_faces(self):
        assert denoms.merge({20: 2}, {20: -2}) == {}

    def test_difference(self):
        assert denoms.difference({100: 5, 20: 24}, {100: 5, 20: 25}) == {20: -1}

    def test_subtract_insufficient_lists_every_shortage(self):
        stock = {20: 2, 5: 1}
        with pytest.raises(InsufficientStock) as exc:
            denoms.subtract(stock, {20: 3, 5: 4, 100: 1})
        assert exc.value.shortages == {100: 1, 20: 1, 5: 3}
        assert stock == {20: 2, 5: 1}

    def test_apply_delta_does_not_mutate_inputs(self):
        stock = {20: 2}
        delta = {20: 1, 100: 1}
        result = denoms.apply_delta(stock, delta)
        assert result == {20: 3, 100: 1}
        assert stock == {20: 2}
        assert delta == {20: 1, 100: 1}


class TestCashCount:
    def test_resolve_total(self):
        assert denoms.resolve_total(Total(740)) == 740
        assert denoms.resolve_total(Breakdown({100: 5, 20: 12})) == 740

    def test_breakdown_of_total_is_none(self):
        assert denoms.breakdown_of(Total(10)) is None
        assert denoms.breakdown_of(Breakdown({10: 1})) == {10: 1}

    def test_positive_count_needs_no_confirmation(self):
        assert denoms.validate_count(Breakdown({20: 1}), FACES) == 20

    def test_zero_count_requires_every_face_touched(self):
        with pytest.raises(IncompleteCount) as exc:
            denoms.validate_count(Total(0, frozenset({100, 50, 20})), FACES)
        assert exc.value.details["unconfirmed"] == [10, 5, 1]

    def test_zero_count_fully_confirmed(self):
        assert denoms.validate_count(Breakdown({}, frozenset(FACES)), FACES) == 0

    def test_negative_total_rejected(self):
        with pytest.raises(InvalidDenomination):
            denoms.validate_count(Total(-1, frozenset(FACES)), FACES)
