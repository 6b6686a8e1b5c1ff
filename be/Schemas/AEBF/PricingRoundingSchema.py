from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime


class PricingRoundingEntryIn(BaseModel):
    productGroup: str
    aspRound: Optional[float] = None
    mormRound: Optional[float] = None
    rmRound: Optional[float] = None  # ignored, recomputed from asp - morm


class SavePricingRoundingRequest(BaseModel):
    year: int
    roundedData: List[PricingRoundingEntryIn]


class PricingRoundingEntryOut(BaseModel):
    product_group: str
    asp_round: Optional[float] = None
    morm_round: Optional[float] = None
    rm_round: Optional[float] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
