"""
Property-based tests for discount stacking
Final amounts never go negative and the reported discount matches the breakdown exactly
"""
from hypothesis import given, strategies as st, settings
from hypothesis.strategies import composite
from decimal import Decimal
from uuid import uuid4

from schemas.discounts import (
    BuyXGetYRule,
    FixedAmountRule,
    PercentageRule,
    TierBreakpoint,
    TieredRule,
)
from services.discounts import apply_discounts

money = st.decimals(min_value=Decimal("0"), max_value=Decimal("100000"), places=2)
fractions = st.decimals(min_value=Decimal("0"), max_value=Decimal("1"), places=2)


@composite
def engine_rules(draw):
    """Generate one rule of any kind with random stacking settings"""
    common = {
        "id": uuid4(),
        "name": "generated",
        "is_stackable": draw(st.booleans()),
        "priority": draw(st.integers(min_value=0, max_value=100)),
    }
    kind = draw(st.sampled_from(["PERCENTAGE", "FIXED_AMOUNT", "BUY_X_GET_Y", "TIERED"]))
    if kind == "PERCENTAGE":
        return PercentageRule(percentage=draw(fractions), **common)
    if kind == "FIXED_AMOUNT":
        return FixedAmountRule(amount=draw(money), **common)
    if kind == "BUY_X_GET_Y":
        return BuyXGetYRule(
            buy_quantity=draw(st.integers(min_value=1, max_value=10)),
            get_quantity=draw(st.integers(min_value=1, max_value=10)),
            **common
        )
    breakpoints = draw(st.lists(
        st.builds(TierBreakpoint, min=st.integers(min_value=0, max_value=10000), discount=fractions),
        max_size=4,
    ))
    return TieredRule(breakpoints=breakpoints, **common)


@composite
def ordered_rules(draw):
    rules = draw(st.lists(engine_rules(), max_size=6))
    return sorted(rules, key=lambda rule: rule.priority, reverse=True)


class TestDiscountStackingProperties:

    @given(ordered_rules(), money, st.integers(min_value=0, max_value=10000), st.integers(min_value=1, max_value=5))
    @settings(max_examples=200, deadline=None)
    def test_final_amount_never_negative(self, rules, amount, quantity, max_stackable):
        final_amount, _ = apply_discounts(rules, amount, quantity, max_stackable)
        assert final_amount >= 0

    @given(ordered_rules(), money, st.integers(min_value=0, max_value=10000), st.integers(min_value=1, max_value=5))
    @settings(max_examples=200, deadline=None)
    def test_breakdown_accounts_for_total_discount(self, rules, amount, quantity, max_stackable):
        final_amount, breakdown = apply_discounts(rules, amount, quantity, max_stackable)

        total = sum((item.discount_amount for item in breakdown), Decimal("0"))
        # Per-unit prices divide inexactly; anything past 1e-10 is real drift
        assert abs((amount - final_amount) - total) < Decimal("1e-10")
        assert len(breakdown) <= max_stackable
        assert all(item.discount_amount > 0 for item in breakdown)

    @given(ordered_rules(), money, st.integers(min_value=0, max_value=10000))
    @settings(max_examples=200, deadline=None)
    def test_non_stackable_rule_only_applies_alone(self, rules, amount, quantity):
        _, breakdown = apply_discounts(rules, amount, quantity, max_stackable=5)
        by_id = {rule.id: rule for rule in rules}

        if any(not by_id[item.rule_id].is_stackable for item in breakdown):
            assert len(breakdown) == 1
