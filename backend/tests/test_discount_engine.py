"""
Discount engine tests: rule evaluation, stacking, degraded rules and usage recording
"""
import asyncio
import pytest
from decimal import Decimal
from datetime import timedelta
from uuid import uuid4
from sqlalchemy import select, func

from core.database import utcnow
from core.exceptions import NotFoundException, ValidationException
from models.discounts import (
    DiscountRule,
    DiscountUsage,
    DiscountTarget,
    DiscountType,
    PurchaseType,
)
from models.payment import PaymentMethod
from schemas.discounts import (
    AdminDiscountConfig,
    AdminDiscountConfigUpdate,
    BuyXGetYRule,
    DiscountRuleCreate,
    DiscountRuleUpdate,
    FixedAmountRule,
    PercentageRule,
    PurchaseContext,
    TierBreakpoint,
    TieredRule,
)
from services.discounts import (
    DiscountEngine,
    DiscountRuleService,
    apply_discounts,
    calculate_single_discount,
    calculate_tiered_discount,
    filter_applicable_rules,
    rule_from_row,
)

CONCURRENT_USES = 6
ENABLED = AdminDiscountConfig(global_discount_enabled=True, max_stackable_discounts=3)


def percentage_rule(fraction, priority=0, stackable=True, **kwargs):
    return PercentageRule(
        id=uuid4(), name=f"{fraction} off", percentage=Decimal(fraction),
        priority=priority, is_stackable=stackable, **kwargs
    )


def context(user_id=None, amount="100", quantity=1, purchase_type=PurchaseType.UNLOCK_CODES, payment_method_id=None):
    return PurchaseContext(
        user_id=user_id or uuid4(),
        purchase_type=purchase_type,
        amount=Decimal(amount),
        quantity=quantity,
        payment_method_id=payment_method_id,
    )


class TestDiscountKinds:
    """Per-kind discount against the running amount"""

    def test_percentage_uses_running_amount(self):
        rules = [percentage_rule("0.1", priority=2), percentage_rule("0.1", priority=1)]
        final_amount, breakdown = apply_discounts(rules, Decimal("100"), 1, max_stackable=3)

        assert [item.discount_amount for item in breakdown] == [Decimal("10.0"), Decimal("9.00")]
        assert final_amount == Decimal("81")

    def test_fixed_amount_capped_at_running_amount(self):
        rule = FixedAmountRule(id=uuid4(), name="$150 off", amount=Decimal("150"))
        assert calculate_single_discount(rule, Decimal("100"), 1) == Decimal("100")

    def test_buy_x_get_y(self):
        rule = BuyXGetYRule(id=uuid4(), name="Buy 2 get 1", buy_quantity=2, get_quantity=1)
        # 6 items at 10 each: 3 free
        assert calculate_single_discount(rule, Decimal("60"), 6) == Decimal("30")

    def test_buy_x_get_y_zero_quantity(self):
        rule = BuyXGetYRule(id=uuid4(), name="Buy 2 get 1", buy_quantity=2, get_quantity=1)
        assert calculate_single_discount(rule, Decimal("60"), 0) == Decimal("0")

    def test_tiered_picks_highest_satisfied_breakpoint(self):
        rule = TieredRule(
            id=uuid4(),
            name="Bulk",
            breakpoints=[
                TierBreakpoint(min=100, discount=Decimal("0.02")),
                TierBreakpoint(min=500, discount=Decimal("0.05")),
                TierBreakpoint(min=1000, discount=Decimal("0.08")),
            ],
        )
        assert calculate_tiered_discount(rule, Decimal("1000"), 750) == Decimal("50")
        assert calculate_tiered_discount(rule, Decimal("1000"), 50) == Decimal("0")

    def test_tiered_malformed_is_zero(self):
        rule = TieredRule(id=uuid4(), name="Broken", breakpoints_malformed=True)
        assert calculate_tiered_discount(rule, Decimal("1000"), 5000) == Decimal("0")


class TestStacking:
    """Ordering, exclusivity and the stack cap"""

    def test_non_stackable_first_excludes_the_rest(self):
        a = percentage_rule("0.1", priority=10, stackable=False)
        b = percentage_rule("0.1", priority=5, stackable=True)
        _, breakdown = apply_discounts([a, b], Decimal("100"), 1, max_stackable=3)

        assert [item.rule_id for item in breakdown] == [a.id]

    def test_non_stackable_after_applied_rule_halts(self):
        b = percentage_rule("0.1", priority=10, stackable=True)
        a = percentage_rule("0.2", priority=5, stackable=False)
        c = percentage_rule("0.05", priority=1, stackable=True)
        final_amount, breakdown = apply_discounts([b, a, c], Decimal("100"), 1, max_stackable=3)

        assert [item.rule_id for item in breakdown] == [b.id]
        assert final_amount == Decimal("90")

    def test_stack_cap(self):
        rules = [percentage_rule("0.1", priority=p) for p in (3, 2, 1)]
        _, breakdown = apply_discounts(rules, Decimal("100"), 1, max_stackable=2)
        assert len(breakdown) == 2

    def test_zero_discount_does_not_count_toward_cap(self):
        empty_tier = TieredRule(
            id=uuid4(), name="Bulk", is_stackable=True, priority=5,
            breakpoints=[TierBreakpoint(min=1000, discount=Decimal("0.1"))],
        )
        rules = [empty_tier, percentage_rule("0.1", priority=4), percentage_rule("0.1", priority=3)]
        _, breakdown = apply_discounts(rules, Decimal("100"), 10, max_stackable=2)

        assert len(breakdown) == 2
        assert empty_tier.id not in {item.rule_id for item in breakdown}

    def test_final_amount_clamped(self):
        rules = [
            FixedAmountRule(id=uuid4(), name="$80 off", amount=Decimal("80"), is_stackable=True, priority=2),
            FixedAmountRule(id=uuid4(), name="$80 off again", amount=Decimal("80"), is_stackable=True, priority=1),
        ]
        final_amount, breakdown = apply_discounts(rules, Decimal("100"), 1, max_stackable=3)

        assert final_amount == Decimal("0")
        assert sum(item.discount_amount for item in breakdown) == Decimal("100")


class TestApplicability:
    def test_payment_method_mismatch_filtered(self):
        method_id = uuid4()
        rule = percentage_rule("0.05", target=DiscountTarget.PAYMENT_METHOD, payment_method_id=method_id)

        assert filter_applicable_rules([rule], context(payment_method_id=uuid4())) == []
        assert filter_applicable_rules([rule], context(payment_method_id=method_id)) == [rule]
        assert filter_applicable_rules([rule], context()) == []

    def test_purchase_types(self):
        codes_only = percentage_rule("0.1", purchase_types=[PurchaseType.UNLOCK_CODES])
        everything = percentage_rule("0.1", purchase_types=[PurchaseType.ALL])
        malformed = percentage_rule("0.1", purchase_types_malformed=True)

        album = context(purchase_type=PurchaseType.ALBUM)
        assert filter_applicable_rules([codes_only, everything, malformed], album) == [everything]

    def test_amount_and_quantity_bounds(self):
        rule = percentage_rule(
            "0.1", min_order_amount=Decimal("50"), max_order_amount=Decimal("500"),
            min_quantity=10, max_quantity=100,
        )
        assert filter_applicable_rules([rule], context(amount="100", quantity=20)) == [rule]
        assert filter_applicable_rules([rule], context(amount="40", quantity=20)) == []
        assert filter_applicable_rules([rule], context(amount="100", quantity=101)) == []

    def test_usage_limits(self):
        exhausted = percentage_rule("0.1", max_total_usage=5, current_total_usage=5)
        per_user = percentage_rule("0.1", max_usage_per_user=1)

        assert filter_applicable_rules([exhausted], context()) == []
        assert filter_applicable_rules([per_user], context(), {per_user.id: 1}) == []
        assert filter_applicable_rules([per_user], context(), {per_user.id: 0}) == [per_user]


class TestRuleConversion:
    def test_percentage_without_value_is_degraded(self):
        row = DiscountRule(id=uuid4(), name="Half-configured", discount_type="PERCENTAGE",
                           target="GLOBAL", is_stackable=True, priority=1)
        rule, degraded = rule_from_row(row)

        assert rule is None
        assert degraded.rule_id == row.id

    def test_malformed_breakpoints_evaluate_to_zero(self):
        row = DiscountRule(id=uuid4(), name="Bulk", discount_type="TIERED", target="GLOBAL",
                           tier_breakpoints="not json", is_stackable=True, priority=1)
        rule, degraded = rule_from_row(row)

        assert isinstance(rule, TieredRule)
        assert rule.breakpoints_malformed
        assert degraded.reason == "Malformed tier breakpoints"

    def test_legacy_string_columns(self):
        row = DiscountRule(
            id=uuid4(), name="Bulk", discount_type="TIERED", target="PURCHASE_TYPE",
            tier_breakpoints='[{"min": 100, "discount": 0.02}]',
            purchase_types='["UNLOCK_CODES"]', is_stackable=True, priority=1,
        )
        rule, degraded = rule_from_row(row)

        assert degraded is None
        assert rule.purchase_types == [PurchaseType.UNLOCK_CODES]
        assert rule.breakpoints[0].discount == Decimal("0.02")

    def test_unknown_purchase_type_marks_rule_incompatible(self):
        row = DiscountRule(id=uuid4(), name="Odd", discount_type="PERCENTAGE", target="GLOBAL",
                           percentage_discount=0.1, purchase_types=["VINYL"], is_stackable=True, priority=1)
        rule, _ = rule_from_row(row)

        assert rule.purchase_types_malformed
        assert filter_applicable_rules([rule], context()) == []


async def create_rule(db_session, **overrides) -> DiscountRule:
    data = {
        "name": "Ten percent",
        "discount_type": DiscountType.PERCENTAGE,
        "percentage_discount": 0.1,
        "is_stackable": True,
        "priority": 1,
    }
    data.update(overrides)
    return await DiscountRuleService(db_session).create_rule(DiscountRuleCreate(**data), created_by="admin")


class TestDiscountEngine:
    """Engine against the store"""

    @pytest.mark.asyncio
    async def test_disabled_returns_original_amount(self, db_session, test_user):
        await create_rule(db_session)
        engine = DiscountEngine(db_session)

        result = await engine.calculate_discounts(
            context(test_user.id, amount="250"),
            config=AdminDiscountConfig(global_discount_enabled=False),
        )
        assert result.final_amount == Decimal("250")
        assert result.discount_breakdown == []

    @pytest.mark.asyncio
    async def test_missing_configuration_means_disabled(self, db_session, test_user):
        await create_rule(db_session)
        result = await DiscountEngine(db_session).calculate_discounts(context(test_user.id))
        assert result.total_discount == Decimal("0")

    @pytest.mark.asyncio
    async def test_unknown_user(self, db_session):
        with pytest.raises(NotFoundException):
            await DiscountEngine(db_session).calculate_discounts(context(uuid4()), config=ENABLED)

    @pytest.mark.asyncio
    async def test_bulk_and_crypto_rules(self, db_session, test_user):
        crypto = PaymentMethod(name="Crypto", provider="coinbase", type="crypto")
        db_session.add(crypto)
        await db_session.commit()

        bulk = await create_rule(
            db_session,
            name="Bulk",
            discount_type=DiscountType.TIERED,
            percentage_discount=None,
            tier_breakpoints=[{"min": 100, "discount": "0.02"}, {"min": 1000, "discount": "0.08"}],
            purchase_types=[PurchaseType.UNLOCK_CODES],
            priority=20,
        )
        await create_rule(
            db_session,
            name="Crypto",
            percentage_discount=0.05,
            target=DiscountTarget.PAYMENT_METHOD,
            payment_method_id=crypto.id,
            is_stackable=False,
            priority=10,
        )

        result = await DiscountEngine(db_session).calculate_discounts(
            context(test_user.id, amount="45000", quantity=1500, payment_method_id=crypto.id),
            config=ENABLED,
        )

        assert len(result.applicable_discounts) == 2
        assert [item.rule_id for item in result.discount_breakdown] == [bulk.id]
        assert result.final_amount == Decimal("41400")
        assert result.total_discount == result.original_amount - result.final_amount

    @pytest.mark.asyncio
    async def test_inactive_and_out_of_window_rules_ignored(self, db_session, test_user):
        now = utcnow()
        await create_rule(db_session, name="Future", start_date=now + timedelta(days=1))
        await create_rule(db_session, name="Expired", start_date=now - timedelta(days=10),
                          end_date=now - timedelta(days=1))
        await create_rule(db_session, name="Off", is_active=False)

        result = await DiscountEngine(db_session).calculate_discounts(context(test_user.id), config=ENABLED)
        assert result.applicable_discounts == []

    @pytest.mark.asyncio
    async def test_degraded_rule_is_reported_and_skipped(self, db_session, test_user):
        db_session.add(DiscountRule(
            name="Half-configured", discount_type="PERCENTAGE", target="GLOBAL",
            is_active=True, is_stackable=True, priority=5, current_total_usage=0,
        ))
        await db_session.commit()
        await create_rule(db_session, priority=1)

        result = await DiscountEngine(db_session).calculate_discounts(context(test_user.id), config=ENABLED)

        assert [rule.rule_name for rule in result.degraded_rules] == ["Half-configured"]
        assert result.final_amount == Decimal("90")

    @pytest.mark.asyncio
    async def test_record_usage_and_per_user_cap(self, db_session, test_user):
        rule = await create_rule(db_session, max_usage_per_user=1)
        engine = DiscountEngine(db_session)

        await engine.record_discount_usage(
            test_user.id, rule.id, "order-1", Decimal("10"), Decimal("100"), Decimal("90"),
            PurchaseType.UNLOCK_CODES,
        )
        await db_session.refresh(rule)
        assert rule.current_total_usage == 1

        result = await engine.calculate_discounts(context(test_user.id), config=ENABLED)
        assert result.discount_breakdown == []

    @pytest.mark.asyncio
    async def test_record_usage_unknown_rule_writes_nothing(self, db_session, test_user):
        with pytest.raises(NotFoundException):
            await DiscountEngine(db_session).record_discount_usage(
                test_user.id, uuid4(), "order-1", Decimal("10"), Decimal("100"), Decimal("90"),
                PurchaseType.ALBUM,
            )
        count = await db_session.execute(select(func.count(DiscountUsage.id)))
        assert count.scalar() == 0

    @pytest.mark.asyncio
    async def test_concurrent_usage_recording_counts_every_use(self, session_factory, db_session, test_user):
        rule = await create_rule(db_session)
        user_id, rule_id = test_user.id, rule.id

        async def record(order_id):
            async with session_factory() as session:
                await DiscountEngine(session).record_discount_usage(
                    user_id, rule_id, order_id, Decimal("10"), Decimal("100"), Decimal("90"),
                    PurchaseType.ALBUM,
                )

        await asyncio.gather(*(record(f"order-{i}") for i in range(CONCURRENT_USES)))

        refreshed = await db_session.execute(
            select(DiscountRule).where(DiscountRule.id == rule_id).execution_options(populate_existing=True)
        )
        assert refreshed.scalar_one().current_total_usage == CONCURRENT_USES
        usages = await db_session.execute(
            select(func.count(DiscountUsage.id)).where(DiscountUsage.discount_rule_id == rule_id))
        assert usages.scalar() == CONCURRENT_USES

    @pytest.mark.asyncio
    async def test_statistics(self, db_session, test_user):
        rule = await create_rule(db_session)
        engine = DiscountEngine(db_session)
        for order_id in ("order-1", "order-2"):
            await engine.record_discount_usage(
                test_user.id, rule.id, order_id, Decimal("10"), Decimal("100"), Decimal("90"),
                PurchaseType.ALBUM,
            )

        stats = await engine.get_discount_statistics()
        assert stats.total_usage == 2
        assert stats.total_savings == Decimal("20")
        assert stats.top_rules[0].rule_id == rule.id
        assert stats.top_rules[0].usage_count == 2

    @pytest.mark.asyncio
    async def test_admin_configuration_upsert(self, db_session):
        engine = DiscountEngine(db_session)
        assert await engine.get_admin_configuration() is None

        await engine.update_admin_configuration(AdminDiscountConfigUpdate(max_stackable_discounts=1), "admin")
        config = await engine.update_admin_configuration(
            AdminDiscountConfigUpdate(global_discount_enabled=False), "admin")

        assert config.max_stackable_discounts == 1
        assert config.global_discount_enabled is False
        assert (await engine.get_admin_configuration()) == config


class TestDiscountRuleService:
    @pytest.mark.asyncio
    async def test_update_revalidates_merged_rule(self, db_session):
        rule = await create_rule(db_session)
        service = DiscountRuleService(db_session)

        with pytest.raises(ValidationException):
            await service.update_rule(rule.id, DiscountRuleUpdate(percentage_discount=1.5))

        updated = await service.update_rule(rule.id, DiscountRuleUpdate(percentage_discount=0.2, priority=7))
        assert updated.percentage_discount == 0.2
        assert updated.priority == 7

    @pytest.mark.asyncio
    async def test_deactivate_keeps_row(self, db_session):
        rule = await create_rule(db_session)
        service = DiscountRuleService(db_session)

        await service.deactivate_rule(rule.id)

        assert [r.id for r in await service.list_rules(include_inactive=False)] == []
        assert [r.id for r in await service.list_rules()] == [rule.id]

    @pytest.mark.asyncio
    async def test_get_missing_rule(self, db_session):
        with pytest.raises(NotFoundException):
            await DiscountRuleService(db_session).get_rule(uuid4())

    def test_create_schema_rejects_payment_rule_without_method(self):
        with pytest.raises(ValueError):
            DiscountRuleCreate(
                name="Crypto", discount_type=DiscountType.PERCENTAGE, percentage_discount=0.05,
                target=DiscountTarget.PAYMENT_METHOD,
            )
