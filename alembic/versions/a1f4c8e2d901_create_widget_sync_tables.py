"""Create widget sync tables.

Revision ID: a1f4c8e2d901
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = 'a1f4c8e2d901'
down_revision = None
branch_labels = None
depends_on = None


def _json():
    return postgresql.JSONB().with_variant(sa.JSON(), 'sqlite')


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'widget_integration',
        sa.Column('id', sa.Uuid(), nullable=False),
        *_timestamps(),
        sa.Column('widget_type', sa.String(length=100), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('mode', sa.String(length=10), nullable=False),
        sa.Column('credential_scope', sa.String(length=20), nullable=False),
        sa.Column('discriminator_type', sa.String(length=20), nullable=False),
        sa.Column('discriminator_keys', _json(), nullable=False),
        sa.Column('credential_schema', _json(), nullable=False),
        sa.Column('config_schema', _json(), nullable=False),
        sa.Column('fetcher', sa.String(length=50), nullable=True),
        sa.Column('pull_endpoint', sa.String(length=1024), nullable=True),
        sa.Column('pull_interval_seconds', sa.Integer(), nullable=True),
        sa.Column('pull_config', _json(), nullable=False),
        sa.Column('push_path', sa.String(length=255), nullable=True),
        sa.Column('push_config', _json(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('widget_type', 'name', name='uq_widget_integration_type_name'),
        sa.CheckConstraint("mode IN ('pull', 'push')", name='check_integration_mode'),
        sa.CheckConstraint(
            'pull_interval_seconds IS NULL OR pull_interval_seconds > 0',
            name='check_pull_interval_positive',
        ),
    )
    op.create_index('ix_widget_integration_widget_type', 'widget_integration', ['widget_type'], unique=False)
    op.create_index('idx_widget_integration_active_type', 'widget_integration', ['is_active', 'widget_type'], unique=False)

    op.create_table(
        'widget_instance',
        sa.Column('id', sa.Uuid(), nullable=False),
        *_timestamps(),
        sa.Column('organization_id', sa.Uuid(), nullable=False),
        sa.Column('widget_type', sa.String(length=100), nullable=False),
        sa.Column('options', _json(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_widget_instance_organization_id', 'widget_instance', ['organization_id'], unique=False)
    op.create_index('idx_widget_instance_org_type', 'widget_instance', ['organization_id', 'widget_type'], unique=False)

    op.create_table(
        'integration_credential',
        sa.Column('id', sa.Uuid(), nullable=False),
        *_timestamps(),
        sa.Column('integration_id', sa.Uuid(), nullable=False),
        sa.Column('organization_id', sa.Uuid(), nullable=True),
        sa.Column('widget_instance_id', sa.Uuid(), nullable=True),
        sa.Column('encrypted_credentials', sa.Text(), nullable=False),
        sa.Column('credential_metadata', _json(), nullable=False),
        sa.Column('validated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_valid', sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(['integration_id'], ['widget_integration.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['widget_instance_id'], ['widget_instance.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            '(organization_id IS NULL) <> (widget_instance_id IS NULL)',
            name='check_credential_single_scope',
        ),
        sa.UniqueConstraint('integration_id', 'organization_id', name='uq_credential_integration_org'),
        sa.UniqueConstraint('integration_id', 'widget_instance_id', name='uq_credential_integration_widget'),
    )
    op.create_index('ix_integration_credential_integration_id', 'integration_credential', ['integration_id'], unique=False)
    op.create_index('idx_credential_widget_instance', 'integration_credential', ['widget_instance_id'], unique=False)

    op.create_table(
        'integration_data',
        sa.Column('id', sa.Uuid(), nullable=False),
        *_timestamps(),
        sa.Column('integration_id', sa.Uuid(), nullable=False),
        sa.Column('discriminator_key', sa.String(length=100), nullable=False),
        sa.Column('data', _json(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('fetched_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refresh_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status', sa.String(length=10), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('organization_id', sa.Uuid(), nullable=True),
        sa.Column('widget_instance_id', sa.Uuid(), nullable=True),
        sa.Column('fetch_options', _json(), nullable=False),
        sa.ForeignKeyConstraint(['integration_id'], ['widget_integration.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('integration_id', 'discriminator_key', name='uq_integration_data_discriminator'),
        sa.CheckConstraint('version >= 1', name='check_version_positive'),
        sa.CheckConstraint("status IN ('success', 'error')", name='check_data_status'),
    )
    op.create_index('ix_integration_data_refresh_at', 'integration_data', ['refresh_at'], unique=False)
    op.create_index('idx_integration_data_integration', 'integration_data', ['integration_id'], unique=False)


def downgrade() -> None:
    op.drop_index('idx_integration_data_integration', table_name='integration_data')
    op.drop_index('ix_integration_data_refresh_at', table_name='integration_data')
    op.drop_table('integration_data')
    op.drop_index('idx_credential_widget_instance', table_name='integration_credential')
    op.drop_index('ix_integration_credential_integration_id', table_name='integration_credential')
    op.drop_table('integration_credential')
    op.drop_index('idx_widget_instance_org_type', table_name='widget_instance')
    op.drop_index('ix_widget_instance_organization_id', table_name='widget_instance')
    op.drop_table('widget_instance')
    op.drop_index('idx_widget_integration_active_type', table_name='widget_integration')
    op.drop_index('ix_widget_integration_widget_type', table_name='widget_integration')
    op.drop_table('widget_integration')
