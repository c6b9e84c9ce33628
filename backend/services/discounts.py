"""
Discount Engine Service for purchase pricing
Evaluates prioritized discount rules against a purchase, records rule usage
and serves the admin discount statistics and configuration
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_, or_, func, update, desc
from pydantic import ValidationError
from datetime import datetime
from typing import List, Dict, Any, Optional, Tuple, Union
from decimal import Decimal
from uuid import UUID
import json
import logging

from core.config import settings
from core.database import transaction_scope, utcnow, as_utc
from core.exceptions import NotFoundException, ValidationException
from core.utils.logging import structured_logger
from models.discounts import (
    DiscountRule,
    DiscountUsage,
    AdminDiscountConfiguration,
    DiscountTarget,
    DiscountType,
    PurchaseType,
)
from models.user import User
from schemas.discounts import (
    PurchaseContext,
    AdminDiscountConfig,
    AdminDiscountConfigUpdate,
    PercentageRule,
    FixedAmountRule,
    BuyXGetYRule,
    TieredRule,
    engine_rule_adapter,
    tier_breakpoints_adapter,
    ApplicableDiscount,
    DegradedRule,
    DiscountBreakdownItem,
    DiscountCalculation,
    DiscountStatistics,
    RuleUsageStatistic,
    DiscountRuleCreate,
    DiscountRuleUpdate,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

EngineRuleType = Union[PercentageRule, FixedAmountRule, BuyXGetYRule, TieredRule]


def _to_decimal(value) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value))


def _decimalize_floats(value):
    # JSON columns hand back floats; keep their printed value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, list):
        return [_decimalize_floats(item) for item in value]
    if isinstance(value, dict):
        return {key: _decimalize_floats(item) for key, item in value.items()}
    return value


def _load_json_list(raw) -> list:
    """Accept a JSON column value or a legacy JSON-encoded string."""
    if isinstance(raw, str):
        raw = json.loads(raw)
    if not isinstance(raw, list):
        raise ValueError("expected a list")
    return raw


def parse_purchase_types(raw) -> Tuple[Optional[List[PurchaseType]], bool]:
    """
    Returns (purchase_types, malformed). ``None`` means the rule applies to every
    purchase type.
    """
    if raw is None:
        return None, False
    try:
        return [PurchaseType(item) for item in _load_json_list(raw)], False
    except (ValueError, TypeError):
        return None, True


def rule_from_row(row: DiscountRule) -> Tuple[Optional[EngineRuleType], Optional[DegradedRule]]:
    """
    Convert a stored rule into its typed variant.

    Returns ``(rule, degraded)``. A row that cannot be converted yields
    ``(None, degraded)``; a tiered rule with unusable breakpoints is still
    returned (it evaluates to zero) together with its degraded entry.
    """
    purchase_types, purchase_types_malformed = parse_purchase_types(row.purchase_types)
    data: Dict[str, Any] = {
        "id": row.id,
        "name": row.name,
        "discount_type": row.discount_type,
        "target": row.target or DiscountTarget.GLOBAL.value,
        "payment_method_id": row.payment_method_id,
        "purchase_types": purchase_types,
        "purchase_types_malformed": purchase_types_malformed,
        "min_order_amount": _to_decimal(row.min_order_amount),
        "max_order_amount": _to_decimal(row.max_order_amount),
        "min_quantity": row.min_quantity,
        "max_quantity": row.max_quantity,
        "is_stackable": bool(row.is_stackable),
        "priority": row.priority or 0,
        "max_total_usage": row.max_total_usage,
        "max_usage_per_user": row.max_usage_per_user,
        "current_total_usage": row.current_total_usage or 0,
    }
    degraded = None

    if row.discount_type == DiscountType.PERCENTAGE.value:
        data["percentage"] = _to_decimal(row.percentage_discount)
    elif row.discount_type == DiscountType.FIXED_AMOUNT.value:
        data["amount"] = _to_decimal(row.fixed_amount_discount)
    elif row.discount_type == DiscountType.BUY_X_GET_Y.value:
        data["buy_quantity"] = row.buy_quantity
        data["get_quantity"] = row.get_quantity
    elif row.discount_type == DiscountType.TIERED.value:
        try:
            raw = _decimalize_floats(_load_json_list(row.tier_breakpoints))
            data["breakpoints"] = tier_breakpoints_adapter.validate_python(raw)
        except (ValidationError, ValueError, TypeError):
            data["breakpoints"] = []
            data["breakpoints_malformed"] = True
            degraded = DegradedRule(
                rule_id=row.id, rule_name=row.name, reason="Malformed tier breakpoints")

    try:
        rule = engine_rule_adapter.validate_python(data)
    except ValidationError as e:
        return None, DegradedRule(
            rule_id=row.id,
            rule_name=row.name,
            reason=f"Rule could not be evaluated ({e.error_count()} invalid field(s))",
        )
    return rule, degraded


# --- Rule evaluation (no I/O) ---

def is_target_compatible(rule: EngineRuleType, context: PurchaseContext) -> bool:
    if rule.target == DiscountTarget.PAYMENT_METHOD:
        return rule.payment_method_id is not None and rule.payment_method_id == context.payment_method_id
    return True


def is_purchase_type_compatible(rule: EngineRuleType, purchase_type: PurchaseType) -> bool:
    if rule.purchase_types_malformed:
        return False
    if rule.purchase_types is None:
        return True
    return purchase_type in rule.purchase_types or PurchaseType.ALL in rule.purchase_types


def is_amount_constraint_met(rule: EngineRuleType, amount: Decimal) -> bool:
    if rule.min_order_amount and amount < rule.min_order_amount:
        return False
    if rule.max_order_amount and amount > rule.max_order_amount:
        return False
    return True


def is_quantity_constraint_met(rule: EngineRuleType, quantity: int) -> bool:
    if rule.min_quantity and quantity < rule.min_quantity:
        return False
    if rule.max_quantity and quantity > rule.max_quantity:
        return False
    return True


def is_usage_limit_met(rule: EngineRuleType, user_usage_count: int) -> bool:
    if rule.max_total_usage and rule.current_total_usage >= rule.max_total_usage:
        return False
    if rule.max_usage_per_user and user_usage_count >= rule.max_usage_per_user:
        return False
    return True


def filter_applicable_rules(
    rules: List[EngineRuleType],
    context: PurchaseContext,
    user_usage_counts: Optional[Dict[UUID, int]] = None,
) -> List[EngineRuleType]:
    """Keep the rules this purchase qualifies for, preserving their order."""
    user_usage_counts = user_usage_counts or {}
    applicable = []
    for rule in rules:
        # Payment-method rules for another method are dropped before any other check
        if not is_target_compatible(rule, context):
            continue
        if not is_purchase_type_compatible(rule, context.purchase_type):
            continue
        if not is_amount_constraint_met(rule, context.amount):
            continue
        if not is_quantity_constraint_met(rule, context.quantity):
            continue
        if not is_usage_limit_met(rule, user_usage_counts.get(rule.id, 0)):
            continue
        applicable.append(rule)
    return applicable


def calculate_tiered_discount(rule: TieredRule, amount: Decimal, quantity: int) -> Decimal:
    if rule.breakpoints_malformed:
        return ZERO
    for breakpoint in sorted(rule.breakpoints, key=lambda b: b.min, reverse=True):
        if quantity >= breakpoint.min:
            return amount * breakpoint.discount
    return ZERO


def calculate_single_discount(rule: EngineRuleType, current_amount: Decimal, quantity: int) -> Decimal:
    """Discount one rule grants against the running amount."""
    if isinstance(rule, PercentageRule):
        return current_amount * rule.percentage
    if isinstance(rule, FixedAmountRule):
        return min(rule.amount, current_amount)
    if isinstance(rule, BuyXGetYRule):
        if not rule.buy_quantity or not rule.get_quantity or quantity <= 0:
            return ZERO
        free_items = (quantity // rule.buy_quantity) * rule.get_quantity
        # Never more free items than were bought
        return min(free_items * (current_amount / quantity), current_amount)
    if isinstance(rule, TieredRule):
        return calculate_tiered_discount(rule, current_amount, quantity)
    return ZERO


def apply_discounts(
    rules: List[EngineRuleType],
    amount: Decimal,
    quantity: int,
    max_stackable: int,
) -> Tuple[Decimal, List[DiscountBreakdownItem]]:
    """
    Walk applicable rules in priority order and stack their discounts.

    A non-stackable rule only applies to an order nothing else has discounted,
    and once applied it ends the walk. Returns ``(final_amount, breakdown)``
    with the final amount clamped at zero.
    """
    final_amount = amount
    breakdown: List[DiscountBreakdownItem] = []
    applied_count = 0

    for rule in rules:
        if not rule.is_stackable and applied_count > 0:
            break
        if applied_count >= max_stackable:
            break

        discount_amount = calculate_single_discount(rule, final_amount, quantity)
        if discount_amount > 0:
            final_amount -= discount_amount
            breakdown.append(DiscountBreakdownItem(
                rule_id=rule.id,
                rule_name=rule.name,
                discount_type=rule.discount_type,
                discount_amount=discount_amount,
            ))
            applied_count += 1
            # Exclusive: later rules are skipped even when stackable
            if not rule.is_stackable:
                break

    return max(ZERO, final_amount), breakdown


class DiscountEngine:
    """Engine evaluating discount rules for a purchase"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_admin_configuration(self) -> Optional[AdminDiscountConfig]:
        result = await self.db.execute(
            select(AdminDiscountConfiguration).order_by(AdminDiscountConfiguration.created_at).limit(1)
        )
        row = result.scalar_one_or_none()
        if not row:
            return None
        return AdminDiscountConfig.model_validate(row)

    async def update_admin_configuration(
        self,
        update_data: AdminDiscountConfigUpdate,
        admin_id: str,
    ) -> AdminDiscountConfig:
        """Create or update the singleton admin configuration."""
        async with transaction_scope(self.db):
            result = await self.db.execute(
                select(AdminDiscountConfiguration).order_by(AdminDiscountConfiguration.created_at).limit(1)
            )
            row = result.scalar_one_or_none()
            if not row:
                row = AdminDiscountConfiguration(
                    global_discount_enabled=True,
                    max_stackable_discounts=settings.DEFAULT_MAX_STACKABLE_DISCOUNTS,
                    discount_calculation_order="priority",
                    auto_apply_best_discount=True,
                )
                self.db.add(row)

            for field, value in update_data.model_dump(exclude_none=True).items():
                setattr(row, field, value)
            row.updated_by = str(admin_id)
            await self.db.flush()

        logger.info(f"Admin discount configuration updated by {admin_id}")
        return AdminDiscountConfig.model_validate(row)

    async def _load_active_rules(self, now: datetime) -> List[DiscountRule]:
        result = await self.db.execute(
            select(DiscountRule).where(
                and_(
                    DiscountRule.is_active == True,
                    or_(DiscountRule.start_date.is_(None), DiscountRule.start_date <= now),
                    or_(DiscountRule.end_date.is_(None), DiscountRule.end_date >= now),
                )
            ).order_by(DiscountRule.priority.desc())
        )
        return list(result.scalars().all())

    async def _user_usage_counts(self, user_id: UUID) -> Dict[UUID, int]:
        result = await self.db.execute(
            select(DiscountUsage.discount_rule_id, func.count(DiscountUsage.id))
            .where(DiscountUsage.user_id == user_id)
            .group_by(DiscountUsage.discount_rule_id)
        )
        return {rule_id: count for rule_id, count in result.all()}

    async def calculate_discounts(
        self,
        context: PurchaseContext,
        config: Optional[AdminDiscountConfig] = None,
    ) -> DiscountCalculation:
        """
        Evaluate every active rule against the purchase and stack the results.

        Args:
            context: Purchase being priced
            config: Admin configuration; loaded from the store when omitted

        Returns:
            DiscountCalculation with final amount, breakdown and any degraded rules

        Raises:
            NotFoundException: the purchasing user does not exist
        """
        user = await self.db.get(User, context.user_id)
        if not user:
            raise NotFoundException(message="User not found", resource="user")

        original_amount = context.amount
        if config is None:
            config = await self.get_admin_configuration()

        if not config or not config.global_discount_enabled:
            return DiscountCalculation(
                total_discount=ZERO,
                final_amount=original_amount,
                original_amount=original_amount,
            )

        rows = await self._load_active_rules(utcnow())
        rules: List[EngineRuleType] = []
        degraded_rules: List[DegradedRule] = []
        for row in rows:
            rule, degraded = rule_from_row(row)
            if degraded:
                degraded_rules.append(degraded)
                structured_logger.warning(
                    message="Discount rule degraded during evaluation",
                    user_id=str(context.user_id),
                    metadata={"rule_id": str(row.id), "reason": degraded.reason},
                )
            if rule is not None:
                if rule.purchase_types_malformed:
                    logger.warning(f"Discount rule {row.id} has malformed purchase types; treating as incompatible")
                rules.append(rule)

        usage_counts = await self._user_usage_counts(context.user_id)
        applicable = filter_applicable_rules(rules, context, usage_counts)

        max_stackable = config.max_stackable_discounts or settings.DEFAULT_MAX_STACKABLE_DISCOUNTS
        final_amount, breakdown = apply_discounts(
            applicable, original_amount, context.quantity, max_stackable)

        return DiscountCalculation(
            applicable_discounts=[
                ApplicableDiscount(
                    id=rule.id,
                    name=rule.name,
                    discount_type=rule.discount_type,
                    priority=rule.priority,
                    is_stackable=rule.is_stackable,
                )
                for rule in applicable
            ],
            total_discount=original_amount - final_amount,
            final_amount=final_amount,
            original_amount=original_amount,
            discount_breakdown=breakdown,
            degraded_rules=degraded_rules,
        )

    async def record_discount_usage(
        self,
        user_id: UUID,
        rule_id: UUID,
        order_id: str,
        discount_amount: Decimal,
        original_amount: Decimal,
        final_amount: Decimal,
        purchase_type: PurchaseType,
    ) -> DiscountUsage:
        """
        Record one application of a rule and bump its usage counter atomically.
        Not idempotent: every call records a new usage.
        """
        async with transaction_scope(self.db):
            exists = await self.db.execute(select(DiscountRule.id).where(DiscountRule.id == rule_id))
            if exists.scalar_one_or_none() is None:
                raise NotFoundException(message="Discount rule not found", resource="discount_rule")

            usage = DiscountUsage(
                user_id=user_id,
                discount_rule_id=rule_id,
                order_id=order_id,
                discount_amount=float(discount_amount),
                original_amount=float(original_amount),
                final_amount=float(final_amount),
                purchase_type=PurchaseType(purchase_type).value,
            )
            self.db.add(usage)
            await self.db.execute(
                update(DiscountRule)
                .where(DiscountRule.id == rule_id)
                .values(current_total_usage=DiscountRule.current_total_usage + 1)
            )

        logger.info(f"Recorded usage of discount rule {rule_id} for order {order_id}")
        return usage

    async def get_discount_statistics(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> DiscountStatistics:
        filters = []
        if start_date:
            filters.append(DiscountUsage.created_at >= start_date)
        if end_date:
            filters.append(DiscountUsage.created_at <= end_date)

        totals = await self.db.execute(
            select(
                func.count(DiscountUsage.id),
                func.coalesce(func.sum(DiscountUsage.discount_amount), 0),
            ).where(*filters)
        )
        total_usage, total_savings = totals.one()

        usage_count = func.count(DiscountUsage.id).label("usage_count")
        top = await self.db.execute(
            select(
                DiscountUsage.discount_rule_id,
                DiscountRule.name,
                usage_count,
                func.coalesce(func.sum(DiscountUsage.discount_amount), 0),
            )
            .join(DiscountRule, DiscountRule.id == DiscountUsage.discount_rule_id)
            .where(*filters)
            .group_by(DiscountUsage.discount_rule_id, DiscountRule.name)
            .order_by(desc("usage_count"))
            .limit(10)
        )

        return DiscountStatistics(
            total_usage=total_usage or 0,
            total_savings=_to_decimal(total_savings) or ZERO,
            top_rules=[
                RuleUsageStatistic(
                    rule_id=rule_id,
                    rule_name=name,
                    usage_count=count,
                    total_discount=_to_decimal(amount) or ZERO,
                )
                for rule_id, name, count, amount in top.all()
            ],
        )


class DiscountRuleService:
    """Admin management of discount rules"""

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def _row_values(data: DiscountRuleCreate) -> Dict[str, Any]:
        values = data.model_dump()
        values["discount_type"] = data.discount_type.value
        values["target"] = data.target.value
        values["purchase_types"] = (
            [purchase_type.value for purchase_type in data.purchase_types]
            if data.purchase_types is not None else None
        )
        values["tier_breakpoints"] = (
            [{"min": bp.min, "discount": float(bp.discount)} for bp in data.tier_breakpoints]
            if data.tier_breakpoints is not None else None
        )
        return values

    async def create_rule(self, data: DiscountRuleCreate, created_by: str) -> DiscountRule:
        async with transaction_scope(self.db):
            rule = DiscountRule(**self._row_values(data), created_by=str(created_by))
            self.db.add(rule)
            await self.db.flush()
        await self.db.refresh(rule)
        logger.info(f"Discount rule '{rule.name}' created by {created_by}")
        return rule

    async def list_rules(self, include_inactive: bool = True) -> List[DiscountRule]:
        query = select(DiscountRule)
        if not include_inactive:
            query = query.where(DiscountRule.is_active == True)
        result = await self.db.execute(
            query.order_by(DiscountRule.priority.desc(), DiscountRule.created_at.desc())
        )
        return list(result.scalars().all())

    async def get_rule(self, rule_id: UUID) -> DiscountRule:
        rule = await self.db.get(DiscountRule, rule_id)
        if not rule:
            raise NotFoundException(message="Discount rule not found", resource="discount_rule")
        return rule

    async def update_rule(self, rule_id: UUID, data: DiscountRuleUpdate) -> DiscountRule:
        rule = await self.get_rule(rule_id)

        merged = {
            field: getattr(rule, field)
            for field in DiscountRuleCreate.model_fields
        }
        merged["start_date"] = as_utc(merged["start_date"])
        merged["end_date"] = as_utc(merged["end_date"])
        merged.update(data.model_dump(exclude_unset=True))
        try:
            validated = DiscountRuleCreate.model_validate(merged)
        except ValidationError as e:
            raise ValidationException(
                message="Invalid discount rule",
                errors={".".join(str(loc) for loc in err["loc"]) or "rule": err["msg"] for err in e.errors()},
            )

        async with transaction_scope(self.db):
            for field, value in self._row_values(validated).items():
                setattr(rule, field, value)
            await self.db.flush()
        await self.db.refresh(rule)
        return rule

    async def deactivate_rule(self, rule_id: UUID) -> DiscountRule:
        """Rules are never hard-deleted; usages keep pointing at them."""
        rule = await self.get_rule(rule_id)
        async with transaction_scope(self.db):
            rule.is_active = False
            await self.db.flush()
        await self.db.refresh(rule)
        logger.info(f"Discount rule {rule_id} deactivated")
        return rule
