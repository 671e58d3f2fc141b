"""shipment_0001_init

Create schema and tables:
- shipment.shipments
- shipment.status_history
"""

from alembic import op

revision = "shipment_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE SCHEMA IF NOT EXISTS shipment")
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS shipment.shipments (
          id VARCHAR(36) PRIMARY KEY,
          delivery_note_no VARCHAR(64) NOT NULL,
          company VARCHAR(255) NOT NULL,
          destination VARCHAR(500) NOT NULL,
          driver_name VARCHAR(255) NOT NULL,
          driver_id VARCHAR(64) NULL,
          ship_date DATE NULL,
          arrival_date DATE NULL,
          arrival_time TIME NULL,
          status VARCHAR(16) NOT NULL DEFAULT 'tertunda',
          constraint_note TEXT NULL,
          qty INTEGER NOT NULL DEFAULT 0,
          current_lat DOUBLE PRECISION NULL,
          current_lng DOUBLE PRECISION NULL,
          tracking_url VARCHAR(2048) NULL,
          created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
          updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
          updated_by VARCHAR(64) NULL,
          CONSTRAINT ck_shipment_shipments_status CHECK (status IN ('tertunda', 'terkirim', 'gagal')),
          CONSTRAINT ck_shipment_shipments_qty CHECK (qty >= 0)
        )
        """
    )
    op.execute("CREATE INDEX IF NOT EXISTS idx_shipment_shipments_status ON shipment.shipments (status)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_shipment_shipments_driver ON shipment.shipments (driver_id)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_shipment_shipments_company ON shipment.shipments (company)")
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS shipment.status_history (
          id VARCHAR(36) PRIMARY KEY,
          shipment_id VARCHAR(36) NOT NULL,
          previous_status VARCHAR(16) NULL,
          new_status VARCHAR(16) NOT NULL,
          notes TEXT NULL,
          created_by VARCHAR(64) NULL,
          created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
          CONSTRAINT fk_shipment_status_history_shipment
            FOREIGN KEY (shipment_id) REFERENCES shipment.shipments(id) ON DELETE CASCADE
        )
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_shipment_status_history_shipment "
        "ON shipment.status_history (shipment_id, created_at)"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS shipment.status_history")
    op.execute("DROP TABLE IF EXISTS shipment.shipments")
