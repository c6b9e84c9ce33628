"""
Seeding the default discount rules, configuration and pricing tiers
"""
import pytest
from decimal import Decimal
from sqlalchemy import select, func

from models.discounts import DiscountRule
from models.pricing import CodePricingTier
from scripts.seed_discount_system import (
    seed_admin_configuration,
    seed_crypto_payment_method,
    seed_discount_rules,
    seed_pricing_tiers,
)
from services.discounts import DiscountEngine
from services.pricing import PricingCalculator


async def seed_all(db_session):
    method = await seed_crypto_payment_method(db_session)
    await seed_discount_rules(db_session, method.id)
    await seed_admin_configuration(db_session)
    await seed_pricing_tiers(db_session)
    return method


@pytest.mark.asyncio
async def test_seed_is_idempotent(db_session):
    first = await seed_all(db_session)
    second = await seed_all(db_session)

    assert first.id == second.id
    rules = await db_session.execute(select(func.count(DiscountRule.id)))
    assert rules.scalar() == 3
    tiers = await db_session.execute(select(func.count(CodePricingTier.id)))
    assert tiers.scalar() == len(PricingCalculator.DEFAULT_TIERS)

    config = await DiscountEngine(db_session).get_admin_configuration()
    assert config.global_discount_enabled is True


@pytest.mark.asyncio
async def test_seeded_rules_price_a_crypto_batch(db_session, test_user):
    method = await seed_all(db_session)

    pricing = await PricingCalculator(db_session).calculate_pricing_with_discounts(
        1500, test_user.id, payment_method_id=method.id)

    # The bulk tier applies first, so the non-stackable crypto rule is left out
    assert pricing.final_amount == Decimal("41400")
    assert [item.rule_name for item in pricing.applicable_discounts] == ["Bulk Unlock Code Discount"]
