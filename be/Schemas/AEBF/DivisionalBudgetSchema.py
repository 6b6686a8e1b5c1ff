from pydantic import BaseModel
from typing import Optional, List, Dict, Any, Union


class DivisionalBudgetDataRequest(BaseModel):
    division: str
    actualYear: int
    budgetYear: Optional[int] = None


class ExportDivisionalBudgetRequest(BaseModel):
    division: str
    actualYear: int
    budgetYear: Optional[int] = None
    tableData: List[Dict[str, Any]] = []
    budgetData: Dict[str, Any] = {}
    servicesChargesData: Optional[Dict[str, Any]] = None
    servicesChargesBudget: Dict[str, Any] = {}
    pricingData: Dict[str, Any] = {}


class ImportDivisionalBudgetRequest(BaseModel):
    htmlContent: Optional[str] = None
    forceUpdate: bool = False
    confirmReplace: bool = False


class BudgetRecordIn(BaseModel):
    # Loosely typed so bad rows are reported per record instead of failing the request
    productGroup: Optional[str] = None
    month: Optional[Union[int, str]] = None
    value: Optional[Union[float, str]] = None


class ServicesChargesRecordIn(BaseModel):
    month: Optional[Union[int, str]] = None
    value: Optional[Union[float, str]] = None  # full currency


class SaveDivisionalBudgetRequest(BaseModel):
    division: str
    budgetYear: int
    records: List[BudgetRecordIn] = []
    servicesChargesRecords: List[ServicesChargesRecordIn] = []
