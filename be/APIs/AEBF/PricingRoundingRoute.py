import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from APIs.Core import get_current_user, CurrentUser
from Database.session import get_division_db
from Schemas.AEBF.PricingRoundingSchema import PricingRoundingEntryOut, SavePricingRoundingRequest
from utils.cache import invalidate_division_cache
from utils.divisions import canonical_division
from utils.errors import BudgetValidationError, BudgetPersistenceError
from utils.pricing_rounding import get_rounded_prices, save_rounded_prices
from utils.rate_limiter import enforce_rate_limit

pricingRoundingRoute = APIRouter(prefix="/api/aebf", tags=["AEBF Pricing Rounding"])

logger = logging.getLogger(__name__)


@pricingRoundingRoute.get("/{division}/product-pricing-rounded")
def get_product_pricing_rounded(
    division: str,
    request: Request,
    year: int = Query(..., description="Pricing year"),
    db: Session = Depends(get_division_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    enforce_rate_limit(request, "budget_query")
    try:
        entries = get_rounded_prices(db, division, year)
        data: List[PricingRoundingEntryOut] = [PricingRoundingEntryOut.model_validate(e) for e in entries]
        return {"success": True, "data": data}

    except (HTTPException, BudgetValidationError):
        raise
    except Exception as e:
        logger.error(f"Error fetching rounded pricing for {division} {year}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error fetching rounded pricing: {str(e)}"
        )


@pricingRoundingRoute.post("/{division}/product-pricing-rounded")
def save_product_pricing_rounded(
    division: str,
    request_body: SavePricingRoundingRequest,
    request: Request,
    db: Session = Depends(get_division_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Upsert rounded ASP / MoRM per product group; RM is recomputed server side."""
    enforce_rate_limit(request, "budget_write")
    try:
        if not request_body.year or not request_body.roundedData:
            raise BudgetValidationError("Year and rounded data are required")
        save_rounded_prices(db, division, request_body.year, request_body.roundedData)
        invalidate_division_cache(canonical_division(division))
        logger.info(
            f"User {current_user.username} saved {len(request_body.roundedData)} rounded prices "
            f"for {division} {request_body.year}"
        )
        return {"success": True, "message": "Rounded pricing saved successfully"}

    except (HTTPException, BudgetValidationError, BudgetPersistenceError):
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"Error saving rounded pricing for {division}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error saving rounded pricing: {str(e)}"
        )
