from sqlalchemy import Column, Integer, String


class MaterialPercentageMixin:
    id = Column(Integer, primary_key=True, autoincrement=True)
    product_group = Column(String(255), nullable=False, unique=True)
    material = Column(String(255), nullable=True)
    process = Column(String(255), nullable=True)
