"""profile_0002_backfill_from_identities

Create a profile for every identity in auth.identities that has none.
Names follow the same order as the sign-up path: metadata name, full_name,
email local part, then 'User'. Idempotent and safe to re-run.
"""

from alembic import op

revision = "profile_0002"
down_revision = "profile_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        INSERT INTO profile.profiles (id, name, role, created_at, updated_at)
        SELECT
          i.id,
          LEFT(
            COALESCE(
              NULLIF(BTRIM(i.user_metadata ->> 'name'), ''),
              NULLIF(BTRIM(i.user_metadata ->> 'full_name'), ''),
              NULLIF(SPLIT_PART(i.email, '@', 1), ''),
              'User'
            ),
            255
          ),
          'user',
          i.created_at,
          NOW()
        FROM auth.identities i
        LEFT JOIN profile.profiles p ON p.id = i.id
        WHERE p.id IS NULL
        ON CONFLICT (id) DO NOTHING
        """
    )


def downgrade() -> None:
    # backfilled rows are indistinguishable from organic ones
    pass
