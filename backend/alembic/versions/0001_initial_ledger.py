"""Initial ledger schema: locations, items, quantities, movements,
requirements, allocations, consumptions, runs, PO lines, audit tables.

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op
import sqlalchemy as sa


def upgrade() -> None:
    # ── Registry / catalog ──────────────────────────────────
    op.create_table(
        "locations",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("code", sa.String(50)),
        sa.Column("type", sa.String(30)),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("vehicle_id", sa.String(36)),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_locations_vehicle_id", "locations", ["vehicle_id"])

    op.create_table(
        "inventory_items",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("sku", sa.String(100), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("unit", sa.String(20), server_default="each"),
        sa.Column("description", sa.Text()),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )

    # ── Quantity store + movement ledger ────────────────────
    op.create_table(
        "inventory_quantities",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("sku_id", sa.String(36), sa.ForeignKey("inventory_items.id"), nullable=False),
        sa.Column("location_id", sa.String(36), sa.ForeignKey("locations.id"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("item_name", sa.String(255)),
        sa.Column("location_name", sa.String(200)),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint("sku_id", "location_id", name="uq_quantity_sku_location"),
        sa.CheckConstraint("quantity >= 0", name="ck_quantity_non_negative"),
    )
    op.create_index("ix_inventory_quantities_sku_id", "inventory_quantities", ["sku_id"])
    op.create_index("ix_inventory_quantities_location_id", "inventory_quantities", ["location_id"])

    op.create_table(
        "stock_movements",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("sku_id", sa.String(36), sa.ForeignKey("inventory_items.id"), nullable=False),
        sa.Column("item_name", sa.String(255)),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("from_location_id", sa.String(36), sa.ForeignKey("locations.id")),
        sa.Column("from_location_name", sa.String(200)),
        sa.Column("to_location_id", sa.String(36), sa.ForeignKey("locations.id")),
        sa.Column("to_location_name", sa.String(200)),
        sa.Column("source", sa.String(20), nullable=False),
        sa.Column("reference_type", sa.String(30)),
        sa.Column("reference_id", sa.String(36)),
        sa.Column("idempotency_key", sa.String(200), unique=True),
        sa.Column("performed_by_id", sa.String(36), nullable=False),
        sa.Column("performed_by_name", sa.String(200)),
        sa.Column("performed_by_email", sa.String(255)),
        sa.Column("performed_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("notes", sa.Text()),
        sa.CheckConstraint("quantity > 0", name="ck_movement_quantity_positive"),
        sa.CheckConstraint(
            "from_location_id IS NOT NULL OR to_location_id IS NOT NULL",
            name="ck_movement_has_location",
        ),
    )
    op.create_index("ix_stock_movements_sku_id", "stock_movements", ["sku_id"])
    op.create_index("ix_stock_movements_from_location_id", "stock_movements", ["from_location_id"])
    op.create_index("ix_stock_movements_to_location_id", "stock_movements", ["to_location_id"])
    op.create_index("ix_stock_movements_source", "stock_movements", ["source"])
    op.create_index("ix_stock_movements_performed_at", "stock_movements", ["performed_at"])

    # Append-only at the storage layer
    if op.get_bind().dialect.name == "postgresql":
        op.execute("""
            CREATE OR REPLACE FUNCTION stock_movements_immutable() RETURNS trigger AS $$
            BEGIN
                RAISE EXCEPTION 'stock_movements is append-only';
            END;
            $$ LANGUAGE plpgsql
        """)
        op.execute("""
            CREATE TRIGGER stock_movements_no_update_delete
            BEFORE UPDATE OR DELETE ON stock_movements
            FOR EACH ROW EXECUTE FUNCTION stock_movements_immutable()
        """)

    op.create_table(
        "purchase_order_lines",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("purchase_order_id", sa.String(36), nullable=False),
        sa.Column("sku_id", sa.String(36), sa.ForeignKey("inventory_items.id"), nullable=False),
        sa.Column("qty_ordered", sa.Integer(), nullable=False),
        sa.Column("qty_received", sa.Integer(), server_default="0"),
        sa.Column("status", sa.String(20), server_default="open"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.CheckConstraint("qty_ordered >= 0", name="ck_po_line_ordered_non_negative"),
        sa.CheckConstraint("qty_received >= 0", name="ck_po_line_received_non_negative"),
    )
    op.create_index("ix_purchase_order_lines_purchase_order_id", "purchase_order_lines", ["purchase_order_id"])
    op.create_index("ix_purchase_order_lines_sku_id", "purchase_order_lines", ["sku_id"])
    op.create_index("ix_purchase_order_lines_status", "purchase_order_lines", ["status"])

    # ── Requirements / allocations / consumption ────────────
    op.create_table(
        "requirement_lines",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("project_id", sa.String(36), nullable=False),
        sa.Column("sku_id", sa.String(36), sa.ForeignKey("inventory_items.id")),
        sa.Column("description", sa.String(255)),
        sa.Column("qty_required", sa.Integer(), nullable=False),
        sa.Column("is_blocking", sa.Boolean(), server_default=sa.false()),
        sa.Column("priority", sa.String(20), server_default="main"),
        sa.Column("status", sa.String(20), server_default="active"),
        sa.Column("notes", sa.Text()),
        sa.Column("created_by", sa.String(36)),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.CheckConstraint("qty_required >= 0", name="ck_requirement_qty_non_negative"),
        sa.CheckConstraint(
            "(sku_id IS NULL) <> (description IS NULL)",
            name="ck_requirement_sku_xor_description",
        ),
    )
    op.create_index("ix_requirement_lines_project_id", "requirement_lines", ["project_id"])
    op.create_index("ix_requirement_lines_status", "requirement_lines", ["status"])

    op.create_table(
        "stock_allocations",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("requirement_id", sa.String(36), sa.ForeignKey("requirement_lines.id")),
        sa.Column("project_id", sa.String(36)),
        sa.Column("job_id", sa.String(36), nullable=False),
        sa.Column("visit_id", sa.String(36)),
        sa.Column("vehicle_id", sa.String(36)),
        sa.Column("from_location_id", sa.String(36), sa.ForeignKey("locations.id")),
        sa.Column("sku_id", sa.String(36), sa.ForeignKey("inventory_items.id")),
        sa.Column("description", sa.String(255)),
        sa.Column("qty_allocated", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), server_default="reserved"),
        sa.Column("status_changed_at", sa.DateTime()),
        sa.Column("override", sa.Boolean(), server_default=sa.false()),
        sa.Column("override_note", sa.Text()),
        sa.Column("allocated_by_id", sa.String(36), nullable=False),
        sa.Column("allocated_by_name", sa.String(200)),
        sa.Column("allocated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("notes", sa.Text()),
        sa.CheckConstraint("qty_allocated > 0", name="ck_allocation_qty_positive"),
    )
    for column in ("requirement_id", "project_id", "job_id", "visit_id",
                   "vehicle_id", "from_location_id", "status"):
        op.create_index(f"ix_stock_allocations_{column}", "stock_allocations", [column])

    op.create_table(
        "stock_consumptions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("job_id", sa.String(36), nullable=False),
        sa.Column("project_id", sa.String(36)),
        sa.Column("visit_id", sa.String(36)),
        sa.Column("sku_id", sa.String(36), sa.ForeignKey("inventory_items.id")),
        sa.Column("description", sa.String(255)),
        sa.Column("qty_consumed", sa.Integer(), nullable=False),
        sa.Column("source_allocation_id", sa.String(36), sa.ForeignKey("stock_allocations.id")),
        sa.Column("location_id", sa.String(36), sa.ForeignKey("locations.id")),
        sa.Column("movement_id", sa.Integer(), sa.ForeignKey("stock_movements.id")),
        sa.Column("override", sa.Boolean(), server_default=sa.false()),
        sa.Column("override_note", sa.Text()),
        sa.Column("consumed_by_id", sa.String(36), nullable=False),
        sa.Column("consumed_by_name", sa.String(200)),
        sa.Column("consumed_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("notes", sa.Text()),
        sa.CheckConstraint("qty_consumed > 0", name="ck_consumption_qty_positive"),
    )
    op.create_index("ix_stock_consumptions_job_id", "stock_consumptions", ["job_id"])
    op.create_index("ix_stock_consumptions_project_id", "stock_consumptions", ["project_id"])
    op.create_index(
        "ix_stock_consumptions_source_allocation_id", "stock_consumptions", ["source_allocation_id"]
    )

    # ── Dispatch ────────────────────────────────────────────
    op.create_table(
        "logistics_runs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("intent_key", sa.String(255), nullable=False, unique=True),
        sa.Column("intent_kind", sa.String(50), nullable=False),
        sa.Column("intent_metadata", sa.JSON()),
        sa.Column("allocation_ids", sa.JSON()),
        sa.Column("job_id", sa.String(36)),
        sa.Column("visit_id", sa.String(36)),
        sa.Column("vehicle_id", sa.String(36)),
        sa.Column("location_id", sa.String(36)),
        sa.Column("assigned_to_user_id", sa.String(36)),
        sa.Column("assigned_to_name", sa.String(200)),
        sa.Column("scheduled_start", sa.DateTime()),
        sa.Column("status", sa.String(20), server_default="draft"),
        sa.Column("notes", sa.Text()),
        sa.Column("created_by", sa.String(36)),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_logistics_runs_job_id", "logistics_runs", ["job_id"])
    op.create_index("ix_logistics_runs_visit_id", "logistics_runs", ["visit_id"])

    op.create_table(
        "logistics_stops",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("run_id", sa.String(36), sa.ForeignKey("logistics_runs.id"), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("purpose", sa.String(30), nullable=False),
        sa.Column("instructions", sa.Text()),
        sa.Column("location_id", sa.String(36)),
    )
    op.create_index("ix_logistics_stops_run_id", "logistics_stops", ["run_id"])

    # ── Audit / reconciliation ──────────────────────────────
    op.create_table(
        "activity_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("actor_id", sa.String(36), nullable=False),
        sa.Column("actor_name", sa.String(200), nullable=False),
        sa.Column("actor_email", sa.String(255)),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.String(36)),
        sa.Column("entity_code", sa.String(255)),
        sa.Column("summary", sa.Text()),
        sa.Column("details", sa.JSON()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_activity_logs_actor_id", "activity_logs", ["actor_id"])
    op.create_index("ix_activity_logs_action", "activity_logs", ["action"])
    op.create_index("ix_activity_logs_entity_type", "activity_logs", ["entity_type"])
    op.create_index("ix_activity_logs_created_at", "activity_logs", ["created_at"])

    op.create_table(
        "reconciliation_alerts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("alert_type", sa.String(50), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("expected_value", sa.Float()),
        sa.Column("actual_value", sa.Float()),
        sa.Column("variance", sa.Float()),
        sa.Column("variance_pct", sa.Float()),
        sa.Column("unit", sa.String(20)),
        sa.Column("entity_refs", sa.JSON()),
        sa.Column("status", sa.String(20), server_default="open"),
        sa.Column("resolved_at", sa.DateTime()),
        sa.Column("resolved_by", sa.String(36)),
        sa.Column("resolution_note", sa.Text()),
        sa.Column("run_id", sa.String(36)),
        sa.Column("is_deleted", sa.Boolean(), server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_reconciliation_alerts_alert_type", "reconciliation_alerts", ["alert_type"])
    op.create_index("ix_reconciliation_alerts_severity", "reconciliation_alerts", ["severity"])
    op.create_index("ix_reconciliation_alerts_status", "reconciliation_alerts", ["status"])
    op.create_index("ix_reconciliation_alerts_run_id", "reconciliation_alerts", ["run_id"])


def downgrade() -> None:
    if op.get_bind().dialect.name == "postgresql":
        op.execute("DROP TRIGGER IF EXISTS stock_movements_no_update_delete ON stock_movements")
        op.execute("DROP FUNCTION IF EXISTS stock_movements_immutable()")
    for table in (
        "reconciliation_alerts",
        "activity_logs",
        "logistics_stops",
        "logistics_runs",
        "stock_consumptions",
        "stock_allocations",
        "requirement_lines",
        "purchase_order_lines",
        "stock_movements",
        "inventory_quantities",
        "inventory_items",
        "locations",
    ):
        op.drop_table(table)
