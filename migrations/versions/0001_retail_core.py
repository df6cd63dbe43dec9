"""retail core: catalog, settlement sources, sales, payments, reconciliation

Revision ID: 0001_retail_core
Revises:
Create Date: 2024-07-01 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_retail_core"
down_revision = None
branch_labels = None
depends_on = None


class GUID(sa.TypeDecorator):
    impl = sa.CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            from sqlalchemy.dialects.postgresql import UUID

            return dialect.type_descriptor(UUID(as_uuid=True))
        return dialect.type_descriptor(sa.CHAR(36))


def _money():
    return sa.Numeric(12, 2, asdecimal=True)


def upgrade() -> None:
    op.create_table(
        "branches",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("address", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=50), nullable=True),
    )
    op.create_table(
        "customers",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "products",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("part_number", sa.String(length=100), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("retail_price", _money(), nullable=False),
        sa.Column("wholesale_price", _money(), nullable=False),
        sa.Column("stock", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
    )
    op.create_index("ix_products_part_number", "products", ["part_number"], unique=True)

    op.create_table(
        "invoices",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("invoice_no", sa.String(length=50), nullable=False, unique=True),
        sa.Column("customer_id", GUID(), sa.ForeignKey("customers.id"), nullable=False),
        sa.Column("branch_id", GUID(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="UNPAID"),
        sa.Column("total_amount", _money(), nullable=False),
        sa.Column("amount_paid", _money(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "invoice_items",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("invoice_id", GUID(), sa.ForeignKey("invoices.id"), nullable=False),
        sa.Column("product_id", GUID(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", _money(), nullable=False),
    )
    op.create_index("ix_invoice_items_invoice_id", "invoice_items", ["invoice_id"])

    op.create_table(
        "stock_requests",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("customer_id", GUID(), sa.ForeignKey("customers.id"), nullable=False),
        sa.Column("branch_id", GUID(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="PENDING"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_table(
        "stock_request_items",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("stock_request_id", GUID(), sa.ForeignKey("stock_requests.id"), nullable=False),
        sa.Column("product_id", GUID(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("wholesale_price_at_request", _money(), nullable=False),
    )
    op.create_index("ix_stock_request_items_stock_request_id", "stock_request_items", ["stock_request_id"])

    op.create_table(
        "sales",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("sale_no", sa.String(length=64), nullable=False, unique=True),
        sa.Column("settlement_key", sa.String(length=255), nullable=False, unique=True),
        sa.Column("customer_id", GUID(), sa.ForeignKey("customers.id"), nullable=False),
        sa.Column("branch_id", GUID(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("subtotal_amount", _money(), nullable=False),
        sa.Column("discount_amount", _money(), nullable=False),
        sa.Column("tax_amount", _money(), nullable=False),
        sa.Column("total_amount", _money(), nullable=False),
        sa.Column("payment_method", sa.String(length=32), nullable=False),
        sa.Column("payment_reference", sa.String(length=255), nullable=True),
        sa.Column("invoice_id", GUID(), sa.ForeignKey("invoices.id"), nullable=True),
        sa.Column("stock_request_id", GUID(), sa.ForeignKey("stock_requests.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_sales_branch_id", "sales", ["branch_id"])
    op.create_table(
        "sale_items",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("sale_id", GUID(), sa.ForeignKey("sales.id"), nullable=False),
        sa.Column("product_id", GUID(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", _money(), nullable=False),
        sa.Column("line_total", _money(), nullable=False),
    )
    op.create_index("ix_sale_items_sale_id", "sale_items", ["sale_id"])

    op.create_table(
        "payment_transactions",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("external_reference", sa.String(length=255), nullable=False, unique=True),
        sa.Column("settleable_key", sa.String(length=255), nullable=False),
        sa.Column("settleable_kind", sa.String(length=32), nullable=False),
        sa.Column("amount", _money(), nullable=False),
        sa.Column("payer_phone", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="AWAITING_CONFIRMATION"),
        sa.Column("outcome", sa.String(length=32), nullable=True),
        sa.Column("result_desc", sa.Text(), nullable=True),
        sa.Column("receipt_number", sa.String(length=64), nullable=True),
        sa.Column("sale_id", GUID(), sa.ForeignKey("sales.id"), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_payment_transactions_settleable_key", "payment_transactions", ["settleable_key"])
    op.create_index(
        "ix_payment_transactions_status_created",
        "payment_transactions",
        ["status", "created_at"],
    )

    op.create_table(
        "reconciliation_items",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("external_reference", sa.String(length=255), nullable=False),
        sa.Column("reason", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="OPEN"),
        sa.Column("amount", _money(), nullable=False),
        sa.Column("settleable_key", sa.String(length=255), nullable=False),
        sa.Column("receipt_number", sa.String(length=64), nullable=True),
        sa.Column("detail", sa.Text(), nullable=True),
        sa.Column("resolution", sa.String(length=32), nullable=True),
        sa.Column("resolution_note", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("external_reference", "reason", name="uq_reconciliation_reference_reason"),
    )
    op.create_index("ix_reconciliation_items_status", "reconciliation_items", ["status"])

    op.create_table(
        "settlement_events",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("trace_id", sa.String(length=255), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_settlement_events_event_type", "settlement_events", ["event_type"])

    op.create_table(
        "idempotency_records",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("endpoint", sa.String(length=255), nullable=False),
        sa.Column("method", sa.String(length=16), nullable=False),
        sa.Column("idempotency_key", sa.String(length=255), nullable=False),
        sa.Column("request_hash", sa.String(length=64), nullable=False),
        sa.Column("state", sa.String(length=20), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=True),
        sa.Column("response_body", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("endpoint", "method", "idempotency_key", name="uq_idempotency"),
    )


def downgrade() -> None:
    op.drop_table("idempotency_records")
    op.drop_index("ix_settlement_events_event_type", table_name="settlement_events")
    op.drop_table("settlement_events")
    op.drop_index("ix_reconciliation_items_status", table_name="reconciliation_items")
    op.drop_table("reconciliation_items")
    op.drop_index("ix_payment_transactions_status_created", table_name="payment_transactions")
    op.drop_index("ix_payment_transactions_settleable_key", table_name="payment_transactions")
    op.drop_table("payment_transactions")
    op.drop_index("ix_sale_items_sale_id", table_name="sale_items")
    op.drop_table("sale_items")
    op.drop_index("ix_sales_branch_id", table_name="sales")
    op.drop_table("sales")
    op.drop_index("ix_stock_request_items_stock_request_id", table_name="stock_request_items")
    op.drop_table("stock_request_items")
    op.drop_table("stock_requests")
    op.drop_index("ix_invoice_items_invoice_id", table_name="invoice_items")
    op.drop_table("invoice_items")
    op.drop_table("invoices")
    op.drop_index("ix_products_part_number", table_name="products")
    op.drop_table("products")
    op.drop_table("customers")
    op.drop_table("branches")
