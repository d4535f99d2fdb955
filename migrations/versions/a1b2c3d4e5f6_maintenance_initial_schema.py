"""maintenance initial schema: companies, assets, work orders and remitos

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "a1b2c3d4e5f6"
down_revision = None
branch_labels = None
depends_on = None


def _tenant_column():
    return sa.Column("company_id", sa.Integer(), sa.ForeignKey("company.id"), nullable=False)


def upgrade():
    op.create_table(
        "company",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False, unique=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "user_account",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("full_name", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "company_membership",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user_account.id"), nullable=False),
        _tenant_column(),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="office"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "company_id", name="uq_company_membership_user_company"),
    )
    op.create_table(
        "company_join_code",
        sa.Column("id", sa.Integer(), primary_key=True),
        _tenant_column(),
        sa.Column("code", sa.String(length=40), nullable=False, unique=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_company_join_code_company_id", "company_join_code", ["company_id"])

    op.create_table(
        "engineer",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user_account.id"), nullable=False, unique=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("contact", sa.String(length=120), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "engineer_company_membership",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("engineer_id", sa.Integer(), sa.ForeignKey("engineer.id"), nullable=False),
        _tenant_column(),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("engineer_id", "company_id", name="uq_engineer_company"),
    )
    op.create_index("ix_engineer_company_membership_engineer_id", "engineer_company_membership", ["engineer_id"])
    op.create_index("ix_engineer_company_membership_company_id", "engineer_company_membership", ["company_id"])

    op.create_table(
        "building",
        sa.Column("id", sa.Integer(), primary_key=True),
        _tenant_column(),
        sa.Column("address", sa.String(length=255), nullable=False),
        sa.Column("neighborhood", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("contact_phone", sa.String(length=60), nullable=False, server_default=""),
        sa.Column("entry_hours", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("client_name", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("relationship_start_date", sa.Date(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_building_company_id", "building", ["company_id"])

    op.create_table(
        "elevator",
        sa.Column("id", sa.Integer(), primary_key=True),
        _tenant_column(),
        sa.Column("building_id", sa.Integer(), sa.ForeignKey("building.id"), nullable=False),
        sa.Column("number", sa.Integer(), nullable=False),
        sa.Column("location_description", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("has_two_doors", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="fit"),
        sa.Column("stops", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("capacity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("machine_room_location", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("control_type", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("plate_number", sa.String(length=60), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_elevator_company_id", "elevator", ["company_id"])
    op.create_index("ix_elevator_building_id", "elevator", ["building_id"])

    op.create_table(
        "equipment",
        sa.Column("id", sa.Integer(), primary_key=True),
        _tenant_column(),
        sa.Column("building_id", sa.Integer(), sa.ForeignKey("building.id"), nullable=False),
        sa.Column("type", sa.String(length=30), nullable=False, server_default="other"),
        sa.Column("name", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("location_description", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("brand", sa.String(length=120), nullable=True),
        sa.Column("model", sa.String(length=120), nullable=True),
        sa.Column("serial_number", sa.String(length=120), nullable=True),
        sa.Column("capacity", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="fit"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_equipment_company_id", "equipment", ["company_id"])
    op.create_index("ix_equipment_building_id", "equipment", ["building_id"])

    op.create_table(
        "technician",
        sa.Column("id", sa.Integer(), primary_key=True),
        _tenant_column(),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user_account.id"), nullable=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("specialty", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("contact", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="Reclamista"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_technician_company_id", "technician", ["company_id"])
    op.create_index("ix_technician_user_id", "technician", ["user_id"])

    op.create_table(
        "work_order",
        sa.Column("id", sa.Integer(), primary_key=True),
        _tenant_column(),
        sa.Column("claim_type", sa.String(length=40), nullable=False, server_default="Corrective"),
        sa.Column("corrective_type", sa.String(length=40), nullable=True),
        sa.Column("building_id", sa.Integer(), sa.ForeignKey("building.id"), nullable=False),
        sa.Column("elevator_id", sa.Integer(), sa.ForeignKey("elevator.id"), nullable=True),
        sa.Column("equipment_id", sa.Integer(), sa.ForeignKey("equipment.id"), nullable=True),
        sa.Column("technician_id", sa.Integer(), sa.ForeignKey("technician.id"), nullable=True),
        sa.Column("contact_name", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("contact_phone", sa.String(length=60), nullable=False, server_default=""),
        sa.Column("date_time", sa.DateTime(), nullable=True),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="Pending"),
        sa.Column("priority", sa.String(length=10), nullable=False, server_default="Low"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("start_time", sa.DateTime(), nullable=True),
        sa.Column("finish_time", sa.DateTime(), nullable=True),
        sa.Column("comments", sa.Text(), nullable=True),
        sa.Column("parts_used", sa.JSON(), nullable=True),
        sa.Column("photo_urls", sa.JSON(), nullable=True),
        sa.Column("signature_data_url", sa.Text(), nullable=True),
        sa.Column("technician_signature_data_url", sa.Text(), nullable=True),
        sa.Column("client_dni", sa.String(length=30), nullable=True),
        sa.Column("client_clarification", sa.String(length=255), nullable=True),
    )
    op.create_index("ix_work_order_company_id", "work_order", ["company_id"])
    op.create_index("ix_work_order_company_status", "work_order", ["company_id", "status"])
    op.create_index("ix_work_order_company_technician", "work_order", ["company_id", "technician_id"])

    op.create_table(
        "elevator_history",
        sa.Column("id", sa.Integer(), primary_key=True),
        _tenant_column(),
        sa.Column("elevator_id", sa.Integer(), sa.ForeignKey("elevator.id"), nullable=False),
        sa.Column("work_order_id", sa.Integer(), sa.ForeignKey("work_order.id"), nullable=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("technician_name", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_elevator_history_company_id", "elevator_history", ["company_id"])
    op.create_index("ix_elevator_history_elevator_id", "elevator_history", ["elevator_id"])

    op.create_table(
        "engineer_report",
        sa.Column("id", sa.Integer(), primary_key=True),
        _tenant_column(),
        sa.Column("engineer_id", sa.Integer(), sa.ForeignKey("engineer.id"), nullable=False),
        sa.Column("address", sa.String(length=255), nullable=False),
        sa.Column("comments", sa.Text(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_engineer_report_company_id", "engineer_report", ["company_id"])
    op.create_index("ix_engineer_report_engineer_id", "engineer_report", ["engineer_id"])

    op.create_table(
        "remito",
        sa.Column("id", sa.Integer(), primary_key=True),
        _tenant_column(),
        sa.Column("work_order_id", sa.Integer(), sa.ForeignKey("work_order.id"), nullable=False, unique=True),
        sa.Column("remito_number", sa.Integer(), nullable=False),
        sa.Column("file_url", sa.String(length=500), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_remito_company_id", "remito", ["company_id"])

    op.create_table(
        "remito_counter",
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("company.id"), primary_key=True),
        sa.Column("last_number", sa.Integer(), nullable=False, server_default="0"),
    )


def downgrade():
    op.drop_table("remito_counter")
    op.drop_index("ix_remito_company_id", table_name="remito")
    op.drop_table("remito")
    op.drop_index("ix_engineer_report_engineer_id", table_name="engineer_report")
    op.drop_index("ix_engineer_report_company_id", table_name="engineer_report")
    op.drop_table("engineer_report")
    op.drop_index("ix_elevator_history_elevator_id", table_name="elevator_history")
    op.drop_index("ix_elevator_history_company_id", table_name="elevator_history")
    op.drop_table("elevator_history")
    op.drop_index("ix_work_order_company_technician", table_name="work_order")
    op.drop_index("ix_work_order_company_status", table_name="work_order")
    op.drop_index("ix_work_order_company_id", table_name="work_order")
    op.drop_table("work_order")
    op.drop_index("ix_technician_user_id", table_name="technician")
    op.drop_index("ix_technician_company_id", table_name="technician")
    op.drop_table("technician")
    op.drop_index("ix_equipment_building_id", table_name="equipment")
    op.drop_index("ix_equipment_company_id", table_name="equipment")
    op.drop_table("equipment")
    op.drop_index("ix_elevator_building_id", table_name="elevator")
    op.drop_index("ix_elevator_company_id", table_name="elevator")
    op.drop_table("elevator")
    op.drop_index("ix_building_company_id", table_name="building")
    op.drop_table("building")
    op.drop_index("ix_engineer_company_membership_company_id", table_name="engineer_company_membership")
    op.drop_index("ix_engineer_company_membership_engineer_id", table_name="engineer_company_membership")
    op.drop_table("engineer_company_membership")
    op.drop_table("engineer")
    op.drop_index("ix_company_join_code_company_id", table_name="company_join_code")
    op.drop_table("company_join_code")
    op.drop_table("company_membership")
    op.drop_table("user_account")
    op.drop_table("company")
