"""Create per-division budget tables

Run once per division database:
    alembic -x division=FP upgrade head
    alembic -x division=HC upgrade head

Revision ID: a3f1c9d2e7b4
Revises:
Create Date: 2026-01-12 10:21:44.508311

"""
from typing import Sequence, Union

from alembic import context, op
import sqlalchemy as sa

from utils.divisions import validate_division


# revision identifiers, used by Alembic.
revision: str = 'a3f1c9d2e7b4'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _code() -> str:
    return validate_division(context.get_x_argument(as_dictionary=True).get("division", "FP")).lower()


def _missing(name: str) -> bool:
    return not sa.inspect(op.get_bind()).has_table(name)


def upgrade() -> None:
    """Upgrade schema."""
    code = _code()

    if _missing(f"{code}_data_excel"):
        op.create_table(
            f"{code}_data_excel",
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('division', sa.String(length=50), nullable=False),
            sa.Column('year', sa.Integer(), nullable=False),
            sa.Column('month', sa.Integer(), nullable=False),
            sa.Column('type', sa.String(length=50), nullable=False),
            sa.Column('salesrepname', sa.String(length=255), nullable=True),
            sa.Column('customername', sa.String(length=500), nullable=True),
            sa.Column('countryname', sa.String(length=255), nullable=True),
            sa.Column('productgroup', sa.String(length=255), nullable=True),
            sa.Column('material', sa.String(length=255), nullable=True),
            sa.Column('process', sa.String(length=255), nullable=True),
            sa.Column('values_type', sa.String(length=20), nullable=False),
            sa.Column('values', sa.Float(), nullable=True),
        )
        op.create_index(f"ix_{code}_data_excel_division_year_type", f"{code}_data_excel", ['division', 'year', 'type'])

    if _missing(f"{code}_material_percentages"):
        op.create_table(
            f"{code}_material_percentages",
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('product_group', sa.String(length=255), nullable=False, unique=True),
            sa.Column('material', sa.String(length=255), nullable=True),
            sa.Column('process', sa.String(length=255), nullable=True),
        )

    pricing = f"{code}_product_group_pricing_rounding"
    if _missing(pricing):
        op.create_table(
            pricing,
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('division', sa.String(length=50), nullable=False),
            sa.Column('year', sa.Integer(), nullable=False),
            sa.Column('product_group', sa.String(length=255), nullable=False),
            sa.Column('asp_round', sa.Numeric(18, 4), nullable=True),
            sa.Column('morm_round', sa.Numeric(18, 4), nullable=True),
            sa.Column('rm_round', sa.Numeric(18, 4), nullable=True),
            sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
            sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
            sa.UniqueConstraint('division', 'year', 'product_group', name=f"uq_{pricing}_key"),
            sa.CheckConstraint('asp_round IS NULL OR asp_round BETWEEN 0 AND 1000', name=f"ck_{pricing}_asp"),
            sa.CheckConstraint('morm_round IS NULL OR morm_round BETWEEN 0 AND 1000', name=f"ck_{pricing}_morm"),
            sa.CheckConstraint('rm_round IS NULL OR rm_round BETWEEN 0 AND 1000', name=f"ck_{pricing}_rm"),
        )
        if op.get_bind().dialect.name == "postgresql":
            op.execute(
                f"CREATE OR REPLACE FUNCTION {pricing}_touch_updated_at() RETURNS TRIGGER AS $$ "
                "BEGIN NEW.updated_at = CURRENT_TIMESTAMP; RETURN NEW; END; "
                "$$ LANGUAGE plpgsql"
            )
            op.execute(
                f"CREATE TRIGGER trg_{pricing}_updated_at BEFORE UPDATE ON {pricing} "
                f"FOR EACH ROW EXECUTE FUNCTION {pricing}_touch_updated_at()"
            )

    budget = f"{code}_divisional_budget"
    if _missing(budget):
        op.create_table(
            budget,
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('division', sa.String(length=50), nullable=False),
            sa.Column('year', sa.Integer(), nullable=False),
            sa.Column('month', sa.Integer(), nullable=False),
            sa.Column('product_group', sa.String(length=255), nullable=False),
            sa.Column('metric', sa.String(length=20), nullable=False),
            sa.Column('value', sa.Numeric(20, 4), nullable=False, server_default='0'),
            sa.Column('material', sa.String(length=255), nullable=True, server_default=''),
            sa.Column('process', sa.String(length=255), nullable=True, server_default=''),
            sa.Column('uploaded_filename', sa.String(length=500), nullable=True),
            sa.Column('uploaded_at', sa.DateTime(), server_default=sa.func.now()),
            sa.UniqueConstraint('division', 'year', 'month', 'product_group', 'metric', name=f"uq_{budget}_key"),
            sa.CheckConstraint('month BETWEEN 1 AND 12', name=f"ck_{budget}_month"),
        )
        op.create_index(f"ix_{budget}_division_year", budget, ['division', 'year'])


def downgrade() -> None:
    """Downgrade schema."""
    code = _code()
    budget = f"{code}_divisional_budget"
    pricing = f"{code}_product_group_pricing_rounding"
    op.drop_index(f"ix_{budget}_division_year", table_name=budget)
    op.drop_table(budget)
    op.drop_table(pricing)
    if op.get_bind().dialect.name == "postgresql":
        op.execute(f"DROP FUNCTION IF EXISTS {pricing}_touch_updated_at()")
