"""
Tests for the Supplier Selector.

Covers:
  - Weighted supplier score (reliability / delivery / payment terms)
  - Reliability cut-off and ranking
  - Missing product
"""

import uuid

import pytest

from supply_chain.sourcing import SupplierSelector, score_supplier
from fakes import FakeDataAccess, make_product, make_supplier

# ── Score ──────────────────────────────────────────────────────────────


class TestScoreSupplier:
    def test_components(self):
        score = score_supplier(make_supplier(reliability_score=0.9, average_delivery_days=7, payment_terms="Net 45"))
        assert score.reliability == pytest.approx(36.0)
        assert score.delivery == pytest.approx(15.0)
        assert score.cost == 25
        assert score.total == pytest.approx(76.0)

    def test_perfect_supplier_scores_close_to_100(self):
        score = score_supplier(make_supplier(reliability_score=1.0, average_delivery_days=0, payment_terms="Net 60"))
        assert score.total == pytest.approx(100.0)

    def test_slow_delivery_is_capped(self):
        """Anything at or beyond two weeks earns no delivery credit."""
        assert score_supplier(make_supplier(average_delivery_days=30)).delivery == 0.0
        assert score_supplier(make_supplier(average_delivery_days=None)).delivery == 0.0

    @pytest.mark.parametrize(
        "terms,points",
        [("Prepaid", 10), ("Net 30", 20), ("Net 45", 25), ("Net 60", 30), ("Net 90", 20), (None, 20)],
    )
    def test_payment_terms(self, terms, points):
        assert score_supplier(make_supplier(payment_terms=terms)).cost == points


# ── Selector ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
class TestOptimizeSupplier:
    async def test_unreliable_suppliers_excluded(self):
        product = make_product()
        good = make_supplier(name="Good", reliability_score=0.8)
        flaky = make_supplier(name="Flaky", reliability_score=0.69)
        access = FakeDataAccess(products=[product], suppliers=[good, flaky])

        result = await SupplierSelector(access).optimize_supplier(product.product_id, quantity=40)

        assert [s.supplier.name for s in result.recommendations] == ["Good"]
        assert result.best_supplier.supplier.name == "Good"
        assert result.quantity == 40

    async def test_ranked_and_limited_to_five(self):
        product = make_product()
        suppliers = [
            make_supplier(name=f"S{days}", reliability_score=0.9, average_delivery_days=days) for days in range(1, 8)
        ]
        access = FakeDataAccess(products=[product], suppliers=suppliers)

        result = await SupplierSelector(access).optimize_supplier(product.product_id, quantity=10)

        assert [s.supplier.name for s in result.recommendations] == ["S1", "S2", "S3", "S4", "S5"]
        totals = [s.total for s in result.recommendations]
        assert totals == sorted(totals, reverse=True)

    async def test_no_eligible_supplier(self):
        product = make_product()
        access = FakeDataAccess(products=[product], suppliers=[make_supplier(reliability_score=0.2)])

        result = await SupplierSelector(access).optimize_supplier(product.product_id, quantity=10)

        assert result.recommendations == []
        assert result.best_supplier is None

    async def test_missing_product(self):
        result = await SupplierSelector(FakeDataAccess()).optimize_supplier(uuid.uuid4(), quantity=10)
        assert result is None
