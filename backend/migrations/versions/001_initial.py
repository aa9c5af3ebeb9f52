"""Initial migration - create all tables

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-19

Creates all database tables for FairTest:
- local_identities: device-scoped exam identities (never replicated)
- exams: published exam definitions
- submissions: anonymized submissions keyed by FINAL_HASH
- results: merged evaluations keyed by student and evaluator FINAL_HASH

JSON documents are stored as text, matching the ORM models.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── Local Identities Table ────────────────────────────────
    op.create_table(
        'local_identities',
        sa.Column('key', sa.String(255), primary_key=True),
        sa.Column('value', sa.Text(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=True),
    )

    # ── Exams Table ───────────────────────────────────────────
    op.create_table(
        'exams',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('questions', sa.Text(), nullable=False, server_default='[]'),
        sa.Column('pass_percentage', sa.Float(), nullable=False, server_default='40'),
        sa.Column('total_marks', sa.Float(), nullable=False, server_default='0'),
        sa.Column('status', sa.Text(), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=True),
    )

    # ── Submissions Table ─────────────────────────────────────
    op.create_table(
        'submissions',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('exam_id', sa.String(64), sa.ForeignKey('exams.id'), nullable=False),
        sa.Column('final_hash', sa.String(128), nullable=False),
        sa.Column('answer_hash', sa.String(128), nullable=False),
        sa.Column('answers', sa.Text(), nullable=False, server_default='{}'),
        sa.Column('time_taken', sa.Float(), nullable=True),
        sa.Column('client_timestamp', sa.BigInteger(), nullable=False),
        sa.Column('status', sa.Text(), nullable=False, server_default='pending_evaluation'),
        sa.Column('submitted_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=True),
    )

    op.create_index('ix_submissions_exam_id', 'submissions', ['exam_id'])
    op.create_index('ix_submissions_status', 'submissions', ['status'])
    op.create_index('ix_submissions_final_hash', 'submissions', ['final_hash'])

    # ── Results Table ─────────────────────────────────────────
    op.create_table(
        'results',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('submission_id', sa.String(64), sa.ForeignKey('submissions.id'),
                  nullable=False, unique=True),
        sa.Column('exam_id', sa.String(64), sa.ForeignKey('exams.id'), nullable=False),
        sa.Column('student_final_hash', sa.String(128), nullable=False),
        sa.Column('evaluator_final_hash', sa.String(128), nullable=False),
        sa.Column('score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('max_score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('percentage', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('passed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('feedback', sa.Text(), nullable=False, server_default=''),
        sa.Column('question_scores', sa.Text(), nullable=False, server_default='[]'),
        sa.Column('evaluated_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=True),
    )

    op.create_index('ix_results_exam_id', 'results', ['exam_id'])
    op.create_index('ix_results_student_final_hash', 'results', ['student_final_hash'])


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    op.drop_index('ix_results_student_final_hash', table_name='results')
    op.drop_index('ix_results_exam_id', table_name='results')
    op.drop_table('results')
    op.drop_index('ix_submissions_final_hash', table_name='submissions')
    op.drop_index('ix_submissions_status', table_name='submissions')
    op.drop_index('ix_submissions_exam_id', table_name='submissions')
    op.drop_table('submissions')
    op.drop_table('exams')
    op.drop_table('local_identities')
