"""profile_0001_init

Create schema and tables:
- profile.profiles
"""

from alembic import op

revision = "profile_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE SCHEMA IF NOT EXISTS profile")
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS profile.profiles (
          id VARCHAR(64) PRIMARY KEY,
          name VARCHAR(255) NOT NULL,
          role VARCHAR(16) NOT NULL DEFAULT 'user',
          created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
          updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
          CONSTRAINT ck_profile_profiles_role CHECK (role IN ('user', 'admin'))
        )
        """
    )
    op.execute("CREATE INDEX IF NOT EXISTS idx_profile_profiles_role ON profile.profiles (role)")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS profile.profiles")
