"""Initial schema: tenants, apps, builds, installations, variables, signing keys.

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    """Create the orchestration core tables."""
    op.create_table(
        "organizations",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(64), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_organizations_slug", "organizations", ["slug"], unique=True)

    op.create_table(
        "environments",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column(
            "organization_id",
            sa.UUID(),
            sa.ForeignKey("organizations.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("slug", sa.String(31), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_production", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("runner_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("database_instance_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("core_schema_version", sa.String(32), nullable=False, server_default="0.1.0"),
        *_timestamps(),
        sa.UniqueConstraint("organization_id", "slug", name="uq_environments_org_slug"),
    )
    op.create_index("ix_environments_organization_id", "environments", ["organization_id"])

    op.create_table(
        "apps",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column(
            "organization_id",
            sa.UUID(),
            sa.ForeignKey("organizations.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("slug", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("build_command", sa.Text(), nullable=False, server_default="bun run build"),
        sa.Column("output_path", sa.String(512), nullable=False, server_default="dist"),
        sa.Column("entrypoint", sa.String(512), nullable=False, server_default="dist/index.js"),
        sa.Column("git_repo_url", sa.String(1024), nullable=False),
        sa.Column("git_repo_branch", sa.String(255), nullable=False, server_default="main"),
        sa.Column("git_repo_path", sa.String(512), nullable=False, server_default=""),
        *_timestamps(),
        sa.UniqueConstraint("organization_id", "slug", name="uq_apps_org_slug"),
    )
    op.create_index("ix_apps_organization_id", "apps", ["organization_id"])

    op.create_table(
        "app_builds",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column(
            "app_id", sa.UUID(), sa.ForeignKey("apps.id", ondelete="RESTRICT"), nullable=False
        ),
        sa.Column(
            "organization_id",
            sa.UUID(),
            sa.ForeignKey("organizations.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("source", sa.String(16), nullable=False, server_default="git"),
        sa.Column("platform_version", sa.String(32), nullable=False, server_default="0.1.0"),
        sa.Column("error_message", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_app_builds_app_id", "app_builds", ["app_id"])
    op.create_index("ix_app_builds_organization_id", "app_builds", ["organization_id"])
    op.create_index("ix_app_builds_status_updated", "app_builds", ["status", "updated_at"])

    op.create_table(
        "app_installations",
        sa.Column(
            "app_id", sa.UUID(), sa.ForeignKey("apps.id", ondelete="RESTRICT"), nullable=False
        ),
        sa.Column(
            "environment_id",
            sa.UUID(),
            sa.ForeignKey("environments.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "organization_id",
            sa.UUID(),
            sa.ForeignKey("organizations.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("app_build_id", sa.UUID(), nullable=False),
        sa.Column("activation_status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("app_id", "environment_id", "organization_id"),
        sa.ForeignKeyConstraint(
            ["app_build_id"], ["app_builds.id"], name="fk_installation_build", ondelete="RESTRICT"
        ),
    )
    op.create_index(
        "ix_app_installations_org_env", "app_installations", ["organization_id", "environment_id"]
    )

    op.create_table(
        "environment_variables",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column(
            "organization_id",
            sa.UUID(),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "environment_id",
            sa.UUID(),
            sa.ForeignKey("environments.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("encrypted_value", sa.Text(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            "organization_id", "environment_id", "name", name="uq_environment_variables_name"
        ),
    )
    op.create_index(
        "ix_environment_variables_organization_id", "environment_variables", ["organization_id"]
    )
    op.create_index(
        "ix_environment_variables_environment_id", "environment_variables", ["environment_id"]
    )

    op.create_table(
        "signing_keys",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column("slot", sa.String(64), nullable=False),
        sa.Column("algorithm", sa.String(16), nullable=False, server_default="RS256"),
        sa.Column("public_jwk", sa.Text(), nullable=False),
        sa.Column("encrypted_private_key", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("retired_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_signing_keys_slot", "signing_keys", ["slot"], unique=True)


def downgrade() -> None:
    """Drop the orchestration core tables."""
    op.drop_table("signing_keys")
    op.drop_table("environment_variables")
    op.drop_table("app_installations")
    op.drop_table("app_builds")
    op.drop_table("apps")
    op.drop_table("environments")
    op.drop_table("organizations")
