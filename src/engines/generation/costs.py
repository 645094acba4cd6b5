"""
Model Selection and Cost Authorization

Both components are stateless: limits are per-request ceilings read from
the catalog, not a running total, so concurrent workflows share them freely.
"""

from decimal import Decimal, InvalidOperation
from typing import Union

from src.core.exceptions import BudgetExceededError, ValidationError
from src.modules.background.catalog import Catalog
from src.modules.background.models import BudgetTier, CostBudget, QualityTier


def to_decimal(value: Union[Decimal, float, int, str]) -> Decimal:
    try:
        # str() first so 0.1 stays 0.1 instead of its binary expansion
        amount = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"Not a valid amount: {value!r}") from None
    if not amount.is_finite():
        raise ValidationError(f"Not a valid amount: {value!r}")
    return amount


class ModelSelector:

    def __init__(self, catalog: Catalog):
        self.catalog = catalog

    def select(
        self,
        quality_tier: Union[QualityTier, str],
        budget: Union[Decimal, float, str]
    ) -> str:
        """Premium model only when premium quality is asked for and the budget reaches the 'high' limit."""
        try:
            tier = QualityTier(quality_tier)
        except ValueError:
            raise ValidationError(f"Unknown quality tier: {quality_tier!r}") from None

        high_limit = self.catalog.budget_limit(BudgetTier.HIGH)
        if tier == QualityTier.PREMIUM and to_decimal(budget) >= high_limit:
            return self.catalog.premium_model_id
        return self.catalog.primary_model_id


class CostLedger:

    def __init__(self, catalog: Catalog):
        self.catalog = catalog

    def budget_for(self, tier: Union[BudgetTier, str]) -> CostBudget:
        try:
            budget_tier = BudgetTier(tier)
        except ValueError:
            raise ValidationError(f"Unknown budget tier: {tier!r}") from None
        return CostBudget(tier=budget_tier, limit=self.catalog.budget_limit(budget_tier))

    def authorize(self, model_id: str, tier: Union[BudgetTier, str]) -> CostBudget:
        """
        Pre-flight check of one request against the tier's ceiling.

        Equality with the limit is allowed.

        Raises:
            BudgetExceededError: the model's unit cost is above the tier limit
            ValidationError: unknown model id or budget tier
        """
        budget = self.budget_for(tier)

        if model_id not in self.catalog.models:
            raise ValidationError(f"Model '{model_id}' is not in the model catalog")
        unit_cost = self.catalog.model_cost(model_id)

        if unit_cost > budget.limit:
            raise BudgetExceededError(
                model_id=model_id,
                unit_cost=unit_cost,
                tier=budget.tier.value,
                limit=budget.limit,
            )
        return budget
