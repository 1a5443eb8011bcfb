"""create oauth_credential and access_log tables

Revision ID: 20261019_01_create_credential_tables
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_01_create_credential_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "oauth_credential",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("subject_id", sa.String(length=64), nullable=False, comment="X 用户 ID"),
        sa.Column("access_token", sa.Text(), nullable=False, comment="访问令牌"),
        sa.Column("refresh_token", sa.Text(), nullable=True, comment="刷新令牌，可能为空"),
        sa.Column("scope", sa.String(length=512), nullable=True, comment="授权范围，空格分隔"),
        sa.Column("token_type", sa.String(length=32), nullable=False, server_default="bearer"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_oauth_credential"),
        sa.UniqueConstraint("subject_id", name="uq_oauth_credential_subject_id"),
    )
    op.create_index("ix_oauth_credential_subject_id", "oauth_credential", ["subject_id"])

    op.create_table(
        "access_log",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("client_ip", sa.String(length=64), nullable=False, comment="客户端真实 IP"),
        sa.Column("request_summary", sa.String(length=2048), nullable=False, comment="请求摘要"),
        sa.Column("passed", sa.Boolean(), nullable=False, comment="是否通过"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_access_log"),
    )
    op.create_index("ix_access_log_client_ip", "access_log", ["client_ip"])
    op.create_index("idx_access_log_created_at", "access_log", ["created_at"])


def downgrade() -> None:
    op.drop_index("idx_access_log_created_at", table_name="access_log")
    op.drop_index("ix_access_log_client_ip", table_name="access_log")
    op.drop_table("access_log")
    op.drop_index("ix_oauth_credential_subject_id", table_name="oauth_credential")
    op.drop_table("oauth_credential")
