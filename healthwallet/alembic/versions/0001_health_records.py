"""Users, profiles and health records."""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "0001_health_records"
down_revision = None
branch_labels = None
depends_on = None


def _json():
    # JSONB on Postgres, generic JSON elsewhere
    return sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False, index=True),
        sa.Column("name", sa.String(length=120)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    op.create_table(
        "user_profile",
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("date_of_birth", sa.Date),
        sa.Column("sex", sa.String(length=16)),
        sa.Column("dietary_preference", sa.String(length=32), nullable=False, server_default="omnivore"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )

    op.create_table(
        "health_records",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("file_url", sa.String(length=1024), nullable=False),
        sa.Column("original_filename", sa.String(length=255), nullable=False),
        sa.Column("record_type", sa.String(length=64), nullable=False, server_default="blood_panel"),
        sa.Column("record_date", sa.Date),
        sa.Column("lab_provider", sa.String(length=255)),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="uploading"),
        sa.Column("error_message", sa.Text),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("raw_text_encrypted", sa.Text),
        sa.Column("parsed_data", sa.Text),
        sa.Column("biomarkers", _json(), nullable=False),
        sa.Column("summary", sa.Text),
        sa.Column("correlations", _json()),
        sa.Column("key_findings", _json()),
        sa.Column("recommendations", _json()),
        sa.Column("food_recommendations", _json()),
        sa.Column("supplement_protocol", _json()),
        sa.Column("wellness_score", sa.Integer),
        sa.Column("health_age", sa.Integer),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )
    op.create_index("ix_health_records_status_created", "health_records", ["status", "created_at"])


def downgrade():
    op.drop_index("ix_health_records_status_created", table_name="health_records")
    op.drop_table("health_records")
    op.drop_table("user_profile")
    op.drop_table("users")
