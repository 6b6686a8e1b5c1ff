"""
Actual sales records ({code}_data_excel)

Loaded by the monthly Excel import; the budget pipeline only reads it.
"""

from sqlalchemy import Column, Integer, String, Float, Index
from sqlalchemy.orm import declared_attr


class DataExcelMixin:
    id = Column(Integer, primary_key=True, autoincrement=True)
    division = Column(String(50), nullable=False)
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)
    type = Column(String(50), nullable=False)  # Actual / Budget / Forecast
    salesrepname = Column(String(255), nullable=True)
    customername = Column(String(500), nullable=True)
    countryname = Column(String(255), nullable=True)
    productgroup = Column(String(255), nullable=True)
    material = Column(String(255), nullable=True)
    process = Column(String(255), nullable=True)
    values_type = Column(String(20), nullable=False)  # AMOUNT / KGS / MORM
    values = Column(Float, nullable=True, default=0)

    @declared_attr
    def __table_args__(cls):
        return (
            Index(f"ix_{cls.__tablename__}_division_year_type", "division", "year", "type"),
        )
