"""Initial incident governance schema: incidents, post-mortems, SLA definitions,
quarters, override ledger, snapshots, finalizations, audit log

Revision ID: 3f9c1a2b7d40
Revises:
Create Date: 2026-10-17 09:12:05.114203

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3f9c1a2b7d40'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'incidents',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('title', sa.String(length=500), nullable=False),
        sa.Column('service', sa.String(length=200), nullable=False),
        sa.Column('severity', sa.String(length=10), nullable=False,
                  comment='Critical | High | Medium | Low'),
        sa.Column('impact', sa.String(length=10), nullable=False,
                  comment='Critical | High | Medium | Low'),
        sa.Column('priority', sa.String(length=2), nullable=False,
                  comment='Derived: classify(severity, impact) - P0..P4'),
        sa.Column('status', sa.String(length=20), nullable=False,
                  comment='Active | Acknowledged | Monitoring | Resolved | Post-Mortem'),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('detected_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('acknowledged_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('first_response_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('mitigation_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reopened_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reopen_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('root_cause', sa.Text(), nullable=False, server_default=''),
        sa.Column('resolution', sa.Text(), nullable=False, server_default=''),
        sa.Column('lessons_learned', sa.Text(), nullable=False, server_default=''),
        sa.Column('notes', sa.Text(), nullable=False, server_default=''),
        sa.Column('tags', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("severity IN ('Critical','High','Medium','Low')", name='ck_incident_severity'),
        sa.CheckConstraint("impact IN ('Critical','High','Medium','Low')", name='ck_incident_impact'),
        sa.CheckConstraint(
            "status IN ('Active','Acknowledged','Monitoring','Resolved','Post-Mortem')",
            name='ck_incident_status',
        ),
        sa.CheckConstraint('reopen_count >= 0', name='ck_incident_reopen_count'),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('incidents', schema=None) as batch_op:
        batch_op.create_index('ix_incidents_priority', ['priority'], unique=False)
        batch_op.create_index('ix_incidents_status', ['status'], unique=False)
        batch_op.create_index('ix_incidents_detected_at', ['detected_at'], unique=False)

    op.create_table(
        'postmortems',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('incident_id', sa.String(length=64), nullable=False),
        sa.Column('content', sa.Text(), nullable=False, server_default=''),
        sa.Column('status', sa.String(length=10), nullable=False, comment='draft | review | final'),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('no_action_items_justified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('no_action_items_justification', sa.Text(), nullable=False, server_default=''),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("status IN ('draft','review','final')", name='ck_postmortem_status'),
        sa.ForeignKeyConstraint(['incident_id'], ['incidents.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('postmortems', schema=None) as batch_op:
        batch_op.create_index('ix_postmortems_incident_id', ['incident_id'], unique=True)

    op.create_table(
        'contributing_factors',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('incident_id', sa.String(length=64), nullable=False),
        sa.Column('category', sa.String(length=30), nullable=False,
                  comment='Process | Tooling | Communication | Human Factors | External'),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('is_root', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['incident_id'], ['incidents.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('contributing_factors', schema=None) as batch_op:
        batch_op.create_index('ix_contributing_factors_incident_id', ['incident_id'], unique=False)

    op.create_table(
        'sla_definitions',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('priority', sa.String(length=2), nullable=False, comment='P0 | P1 | P2 | P3 | P4'),
        sa.Column('response_time_minutes', sa.Integer(), nullable=False),
        sa.Column('resolve_time_minutes', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("priority IN ('P0','P1','P2','P3','P4')", name='ck_sla_priority'),
        sa.CheckConstraint('response_time_minutes > 0', name='ck_sla_response_positive'),
        sa.CheckConstraint(
            'resolve_time_minutes >= response_time_minutes', name='ck_sla_resolve_after_response',
        ),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('sla_definitions', schema=None) as batch_op:
        batch_op.create_index('ix_sla_definitions_priority', ['priority'], unique=False)

    op.create_table(
        'quarters',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('fiscal_year', sa.Integer(), nullable=False),
        sa.Column('quarter_number', sa.Integer(), nullable=False, comment='1..4'),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('label', sa.String(length=100), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('quarter_number BETWEEN 1 AND 4', name='ck_quarter_number'),
        sa.CheckConstraint('end_date > start_date', name='ck_quarter_dates'),
        sa.UniqueConstraint('fiscal_year', 'quarter_number', name='uq_quarter_year_number'),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'quarter_overrides',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('quarter_id', sa.String(length=64), nullable=False),
        sa.Column('rule_key', sa.String(length=80), nullable=False),
        sa.Column('incident_id', sa.String(length=64), nullable=False,
                  comment='Not a FK: overrides outlive incident edits and deletions'),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('approved_by', sa.String(length=150), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['quarter_id'], ['quarters.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('quarter_id', 'rule_key', 'incident_id',
                            name='uq_override_quarter_rule_incident'),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('quarter_overrides', schema=None) as batch_op:
        batch_op.create_index('ix_quarter_overrides_quarter_id', ['quarter_id'], unique=False)

    op.create_table(
        'quarter_snapshots',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('quarter_id', sa.String(length=64), nullable=False),
        sa.Column('schema_version', sa.Integer(), nullable=False),
        sa.Column('inputs_hash', sa.String(length=64), nullable=False, comment='SHA-256 hex digest'),
        sa.Column('snapshot_json', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['quarter_id'], ['quarters.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('quarter_snapshots', schema=None) as batch_op:
        batch_op.create_index('ix_quarter_snapshots_quarter_id', ['quarter_id'], unique=True)

    op.create_table(
        'quarter_finalizations',
        sa.Column('quarter_id', sa.String(length=64), nullable=False),
        sa.Column('snapshot_id', sa.String(length=64), nullable=False),
        sa.Column('inputs_hash', sa.String(length=64), nullable=False),
        sa.Column('finalized_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('finalized_by', sa.String(length=150), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['quarter_id'], ['quarters.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['snapshot_id'], ['quarter_snapshots.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('quarter_id'),
    )

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('entity_type', sa.String(length=30), nullable=False,
                  comment='incident | quarter | quarter_override | sla_definition'),
        sa.Column('entity_id', sa.String(length=64), nullable=False,
                  comment='PK of the referenced entity'),
        sa.Column('action', sa.String(length=60), nullable=False),
        sa.Column('actor', sa.String(length=150), nullable=False),
        sa.Column('diff_json', sa.Text(), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('audit_logs', schema=None) as batch_op:
        batch_op.create_index('idx_audit_entity', ['entity_type', 'entity_id'], unique=False)
        batch_op.create_index('idx_audit_actor', ['actor'], unique=False)
        batch_op.create_index('idx_audit_action', ['action'], unique=False)
        batch_op.create_index('idx_audit_ts', ['timestamp'], unique=False)


def downgrade():
    op.drop_table('audit_logs')
    op.drop_table('quarter_finalizations')
    op.drop_table('quarter_snapshots')
    op.drop_table('quarter_overrides')
    op.drop_table('quarters')
    op.drop_table('sla_definitions')
    op.drop_table('contributing_factors')
    op.drop_table('postmortems')
    op.drop_table('incidents')
