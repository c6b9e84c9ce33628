#!/usr/bin/env python3
"""
Script to seed the discount system, payment methods and code pricing tiers
"""

import asyncio
import sys
import os
from decimal import Decimal

# Add the backend directory to the Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

import models  # noqa: F401
from core.config import settings
from core.database import initialize_db, db_manager
from core.exceptions import APIException
from models.discounts import DiscountType, DiscountTarget, PurchaseType
from models.payment import PaymentMethod
from models.pricing import CodePricingTier
from schemas.discounts import AdminDiscountConfigUpdate, DiscountRuleCreate, TierBreakpoint
from services.discounts import DiscountEngine, DiscountRuleService
from services.pricing import PricingCalculator

SEED_ADMIN = "system-seed"


async def seed_crypto_payment_method(db: AsyncSession) -> PaymentMethod:
    result = await db.execute(select(PaymentMethod).where(PaymentMethod.type == "crypto"))
    method = result.scalars().first()
    if method:
        print(f"Payment method '{method.name}' already exists, skipping...")
        return method

    method = PaymentMethod(name="Crypto", provider="coinbase", type="crypto", is_active=True)
    db.add(method)
    await db.commit()
    await db.refresh(method)
    print(f"Created payment method: {method.name}")
    return method


def build_default_rules(crypto_method_id):
    return [
        DiscountRuleCreate(
            name="Crypto Payment Discount",
            description="5% off when paying with crypto",
            discount_type=DiscountType.PERCENTAGE,
            target=DiscountTarget.PAYMENT_METHOD,
            percentage_discount=0.05,
            payment_method_id=crypto_method_id,
            purchase_types=[PurchaseType.ALL],
            is_stackable=False,
            priority=10,
        ),
        DiscountRuleCreate(
            name="Bulk Unlock Code Discount",
            description="Volume discount on unlock code batches",
            discount_type=DiscountType.TIERED,
            target=DiscountTarget.PURCHASE_TYPE,
            tier_breakpoints=[
                TierBreakpoint(min=100, discount=Decimal("0.02")),
                TierBreakpoint(min=500, discount=Decimal("0.05")),
                TierBreakpoint(min=1000, discount=Decimal("0.08")),
                TierBreakpoint(min=5000, discount=Decimal("0.12")),
            ],
            purchase_types=[PurchaseType.UNLOCK_CODES],
            min_quantity=100,
            is_stackable=True,
            priority=20,
        ),
        DiscountRuleCreate(
            name="First-Time Buyer Discount",
            description="10% off a listener's first purchase",
            discount_type=DiscountType.PERCENTAGE,
            target=DiscountTarget.GLOBAL,
            percentage_discount=0.10,
            purchase_types=[PurchaseType.ALBUM, PurchaseType.TRACK],
            is_stackable=True,
            priority=5,
            max_usage_per_user=1,
        ),
    ]


async def seed_discount_rules(db: AsyncSession, crypto_method_id):
    rule_service = DiscountRuleService(db)
    existing = {rule.name for rule in await rule_service.list_rules()}

    for rule_data in build_default_rules(crypto_method_id):
        if rule_data.name in existing:
            print(f"Discount rule '{rule_data.name}' already exists, skipping...")
            continue
        try:
            rule = await rule_service.create_rule(rule_data, created_by=SEED_ADMIN)
            print(f"Created discount rule: {rule.name} (priority {rule.priority})")
        except APIException as e:
            print(f"Error creating discount rule '{rule_data.name}': {e.message}")


async def seed_admin_configuration(db: AsyncSession):
    engine = DiscountEngine(db)
    if await engine.get_admin_configuration():
        print("Admin discount configuration already exists, skipping...")
        return
    config = await engine.update_admin_configuration(
        AdminDiscountConfigUpdate(
            global_discount_enabled=True,
            max_stackable_discounts=settings.DEFAULT_MAX_STACKABLE_DISCOUNTS,
            discount_calculation_order="priority",
            auto_apply_best_discount=True,
        ),
        admin_id=SEED_ADMIN,
    )
    print(f"Created admin discount configuration (max stackable: {config.max_stackable_discounts})")


async def seed_pricing_tiers(db: AsyncSession):
    result = await db.execute(select(CodePricingTier.id).limit(1))
    if result.scalar_one_or_none() is not None:
        print("Code pricing tiers already exist, skipping...")
        return

    for tier in PricingCalculator.DEFAULT_TIERS:
        db.add(CodePricingTier(
            min_quantity=tier.min_quantity,
            max_quantity=tier.max_quantity,
            price_per_code=float(tier.price_per_code),
            currency=tier.currency,
            is_active=tier.is_active,
        ))
        print(f"Created pricing tier: {PricingCalculator.get_tier_name(tier)} at ${tier.price_per_code}")
    await db.commit()


async def seed_discount_system():
    """Seed payment methods, discount rules, admin configuration and pricing tiers"""
    initialize_db(settings.SQLALCHEMY_DATABASE_URI, env_is_local=False)
    await db_manager.create_all()

    try:
        async with db_manager.session_factory() as db:
            print("Seeding discount system...")
            crypto_method = await seed_crypto_payment_method(db)
            await seed_discount_rules(db, crypto_method.id)
            await seed_admin_configuration(db)
            await seed_pricing_tiers(db)
            print("Discount system seeding completed!")
    finally:
        await db_manager.dispose()


if __name__ == "__main__":
    asyncio.run(seed_discount_system())
