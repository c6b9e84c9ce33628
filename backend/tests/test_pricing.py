"""
Pricing calculator tests for unlock code batches
"""
import pytest
from hypothesis import given, strategies as st, settings
from decimal import Decimal
from uuid import uuid4

from core.exceptions import ValidationException
from models.discounts import PurchaseType
from models.pricing import CodePricingTier
from schemas.discounts import AdminDiscountConfigUpdate, DiscountRuleCreate
from schemas.pricing import PricingTier
from services.discounts import DiscountEngine, DiscountRuleService
from services.pricing import PricingCalculator


class TestCalculatePricing:

    def test_middle_tier(self):
        pricing = PricingCalculator.calculate_pricing(1500)

        assert pricing.tier.id == "tier_2"
        assert pricing.price_per_code == Decimal("30")
        assert pricing.total_cost == Decimal("45000")
        assert pricing.savings == Decimal("30000")
        assert pricing.breakdown[0].tier_name == "1,000-4,999 codes"

    def test_entry_tier_has_no_savings(self):
        pricing = PricingCalculator.calculate_pricing(10)
        assert pricing.total_cost == Decimal("500")
        assert pricing.savings == Decimal("0")

    def test_open_ended_tier(self):
        pricing = PricingCalculator.calculate_pricing(20000)
        assert pricing.tier.max_quantity is None
        assert pricing.breakdown[0].tier_name == "5,000+ codes"

    def test_non_positive_quantity(self):
        with pytest.raises(ValidationException) as exc_info:
            PricingCalculator.calculate_pricing(0)
        assert exc_info.value.message == "Quantity must be greater than 0"

    def test_uncovered_quantity(self):
        tiers = [PricingTier(id="small", min_quantity=1, max_quantity=10, price_per_code=Decimal("5"))]
        with pytest.raises(ValidationException) as exc_info:
            PricingCalculator.calculate_pricing(11, tiers)
        assert exc_info.value.message == "No pricing tier found for quantity: 11"

    def test_inactive_tiers_ignored(self):
        tiers = [
            PricingTier(id="a", min_quantity=1, max_quantity=None, price_per_code=Decimal("10")),
            PricingTier(id="b", min_quantity=100, max_quantity=None, price_per_code=Decimal("1"), is_active=False),
        ]
        assert PricingCalculator.calculate_pricing(500, tiers).tier.id == "a"

    def test_no_active_tiers(self):
        tiers = [PricingTier(id="a", min_quantity=1, price_per_code=Decimal("10"), is_active=False)]
        with pytest.raises(ValidationException):
            PricingCalculator.calculate_pricing(5, tiers)

    @given(st.integers(min_value=1, max_value=100_000))
    @settings(max_examples=100, deadline=None)
    def test_total_matches_selected_tier(self, quantity):
        pricing = PricingCalculator.calculate_pricing(quantity)
        tier = pricing.tier

        assert pricing.total_cost == quantity * tier.price_per_code
        assert tier.min_quantity <= quantity
        assert tier.max_quantity is None or quantity <= tier.max_quantity


class TestValidateQuantity:

    @pytest.mark.parametrize("quantity", [0, -5, 2.5, "100", True])
    def test_rejects_non_positive_and_non_integers(self, quantity):
        result = PricingCalculator.validate_quantity(quantity)
        assert not result.is_valid
        assert result.error == "Quantity must be a positive integer"

    def test_rejects_over_maximum(self):
        result = PricingCalculator.validate_quantity(100_001)
        assert result.error == "Maximum quantity is 100,000 codes per batch"

    def test_warnings(self):
        assert PricingCalculator.validate_quantity(50).warnings == [
            "Consider ordering more codes to take advantage of volume pricing"
        ]
        assert PricingCalculator.validate_quantity(20_000).warnings == [
            "Large batches may take several minutes to generate"
        ]
        assert PricingCalculator.validate_quantity(500).warnings == []


def test_pricing_summary():
    summary = PricingCalculator.get_pricing_summary(PricingCalculator.calculate_pricing(1500))

    assert summary.display_text == "1,500 codes at $30 each"
    assert summary.savings_text == "Save $30,000"
    assert summary.total_cost == "$45,000"


class TestPricingWithDiscounts:

    @pytest.mark.asyncio
    async def test_discount_engine_layered_on_top(self, db_session, test_user):
        await DiscountEngine(db_session).update_admin_configuration(
            AdminDiscountConfigUpdate(global_discount_enabled=True), "admin")
        await DiscountRuleService(db_session).create_rule(
            DiscountRuleCreate(
                name="Bulk",
                discount_type="TIERED",
                tier_breakpoints=[{"min": 1000, "discount": "0.08"}],
                purchase_types=[PurchaseType.UNLOCK_CODES],
                is_stackable=True,
                priority=20,
            ),
            created_by="admin",
        )

        pricing = await PricingCalculator(db_session).calculate_pricing_with_discounts(1500, test_user.id)

        assert pricing.original_amount == Decimal("45000")
        assert pricing.discount_amount == Decimal("3600")
        assert pricing.final_amount == Decimal("41400")
        assert pricing.total_cost == pricing.final_amount
        assert pricing.applicable_discounts[0].rule_name == "Bulk"

    @pytest.mark.asyncio
    async def test_engine_failure_falls_back_to_base_pricing(self, db_session):
        # Unknown user makes the engine raise
        pricing = await PricingCalculator(db_session).calculate_pricing_with_discounts(1500, uuid4())

        assert pricing.total_cost == Decimal("45000")
        assert pricing.final_amount is None

    @pytest.mark.asyncio
    async def test_active_tiers_from_store(self, db_session):
        calculator = PricingCalculator(db_session)
        assert [tier.id for tier in await calculator.get_active_tiers()] == ["tier_1", "tier_2", "tier_3"]

        db_session.add_all([
            CodePricingTier(min_quantity=1, max_quantity=None, price_per_code=12.5, currency="USD"),
            CodePricingTier(min_quantity=10, max_quantity=None, price_per_code=9.0, currency="USD", is_active=False),
        ])
        await db_session.commit()

        tiers = await calculator.get_active_tiers()
        assert len(tiers) == 1
        assert tiers[0].price_per_code == Decimal("12.5")
