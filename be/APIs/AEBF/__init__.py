from APIs.AEBF.DivisionalBudgetRoute import divisionalBudgetRoute
from APIs.AEBF.PricingRoundingRoute import pricingRoundingRoute

__all__ = ["divisionalBudgetRoute", "pricingRoundingRoute"]
