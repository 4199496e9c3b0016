"""scorm packages and runtime data tables

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18
"""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '20261018_0001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'scorm_packages',
        sa.Column('id', sa.String(length=64), primary_key=True),
        sa.Column('course_id', sa.String(length=128), nullable=False),
        sa.Column('lesson_id', sa.String(length=128), nullable=False),
        sa.Column('version', sa.String(length=8), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column(
            'storage_base_path', sa.String(length=1024), nullable=False
        ),
        sa.Column('launch_url', sa.String(length=2048), nullable=False),
        sa.Column('manifest_json', sa.JSON(), nullable=False),
        sa.Column('package_size', sa.BigInteger(), nullable=False),
        sa.Column('uploaded_by', sa.String(length=128), nullable=False),
        sa.Column('uploaded_at', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.BigInteger(), nullable=False),
        sa.Column('updated_at', sa.BigInteger(), nullable=False),
        sa.Column('deleted_at', sa.BigInteger(), nullable=True),
    )
    op.create_index(
        'ix_scorm_packages_course_id', 'scorm_packages', ['course_id']
    )
    op.create_index(
        'ix_scorm_packages_lesson_id', 'scorm_packages', ['lesson_id']
    )

    op.create_table(
        'scorm_runtime_data',
        sa.Column('id', sa.String(length=64), primary_key=True),
        sa.Column('user_id', sa.String(length=128), nullable=False),
        sa.Column('package_id', sa.String(length=64), nullable=False),
        sa.Column('lesson_id', sa.String(length=128), nullable=False),
        sa.Column('course_id', sa.String(length=128), nullable=False),
        sa.Column('version', sa.String(length=8), nullable=False),
        sa.Column('cmi_data', sa.JSON(), nullable=False),
        sa.Column(
            'session_time', sa.BigInteger(), nullable=False,
            server_default='0'
        ),
        sa.Column(
            'total_time', sa.BigInteger(), nullable=False,
            server_default='0'
        ),
        sa.Column(
            'completion_status', sa.String(length=32), nullable=False,
            server_default='not attempted'
        ),
        sa.Column(
            'success_status', sa.String(length=16), nullable=False,
            server_default='unknown'
        ),
        sa.Column('score_raw', sa.Float(), nullable=True),
        sa.Column('score_min', sa.Float(), nullable=True),
        sa.Column('score_max', sa.Float(), nullable=True),
        sa.Column('score_scaled', sa.Float(), nullable=True),
        sa.Column('suspend_data', sa.Text(), nullable=True),
        sa.Column('location', sa.String(length=1024), nullable=True),
        sa.Column(
            'attempt_count', sa.Integer(), nullable=False,
            server_default='1'
        ),
        sa.Column('first_accessed_at', sa.BigInteger(), nullable=False),
        sa.Column('last_accessed_at', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.BigInteger(), nullable=False),
        sa.Column('updated_at', sa.BigInteger(), nullable=False),
        sa.UniqueConstraint(
            'user_id', 'package_id', name='uq_scorm_runtime_user_package'
        ),
    )
    op.create_index(
        'ix_scorm_runtime_data_package_id', 'scorm_runtime_data',
        ['package_id']
    )
    op.create_index(
        'ix_scorm_runtime_course_user', 'scorm_runtime_data',
        ['course_id', 'user_id']
    )


def downgrade() -> None:
    op.drop_index(
        'ix_scorm_runtime_course_user', table_name='scorm_runtime_data'
    )
    op.drop_index(
        'ix_scorm_runtime_data_package_id', table_name='scorm_runtime_data'
    )
    op.drop_table('scorm_runtime_data')
    op.drop_index('ix_scorm_packages_lesson_id', table_name='scorm_packages')
    op.drop_index('ix_scorm_packages_course_id', table_name='scorm_packages')
    op.drop_table('scorm_packages')
