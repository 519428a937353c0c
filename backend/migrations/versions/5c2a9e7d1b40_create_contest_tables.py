"""create competition, question, participant and leaderboard tables

Revision ID: 5c2a9e7d1b40
Revises:
Create Date: 2026-10-19 00:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c2a9e7d1b40'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'competition',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('time_limit_minutes', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('start_date', sa.Float(), nullable=True),
        sa.Column('end_date', sa.Float(), nullable=True),
        sa.Column('created_at', sa.Float(), nullable=False),
    )
    op.create_table(
        'question',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('competition_id', sa.Integer(), sa.ForeignKey('competition.id'), nullable=False),
        sa.Column('title', sa.String(length=256), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('attachments', sa.Text(), nullable=True),
        sa.Column('created_at', sa.Float(), nullable=False),
    )
    op.create_index('ix_question_competition_id', 'question', ['competition_id'])
    op.create_table(
        'participant',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('lan_id', sa.String(length=64), nullable=False),
        sa.Column('competition_id', sa.Integer(), sa.ForeignKey('competition.id'), nullable=False),
        sa.Column('question_id', sa.Integer(), sa.ForeignKey('question.id'), nullable=False),
        sa.Column('start_time', sa.Float(), nullable=False),
        sa.Column('end_time', sa.Float(), nullable=False),
        sa.Column('submitted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('expired', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('submitted_at', sa.Float(), nullable=True),
        sa.Column('score', sa.Integer(), nullable=True),
        sa.Column('answer', sa.Text(), nullable=True),
        sa.Column('draft', sa.Text(), nullable=True),
        sa.Column('prompt_file_url', sa.String(length=512), nullable=True),
        sa.Column('output_file_url', sa.String(length=512), nullable=True),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.UniqueConstraint('lan_id', 'competition_id', name='uq_participant_lan_competition'),
    )
    op.create_index('ix_participant_lan_id', 'participant', ['lan_id'])
    op.create_index('ix_participant_competition_id', 'participant', ['competition_id'])
    op.create_table(
        'leaderboard',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('lan_id', sa.String(length=64), nullable=False),
        sa.Column('competition_id', sa.Integer(), sa.ForeignKey('competition.id'), nullable=False),
        sa.Column('score', sa.Integer(), nullable=False),
        sa.Column('overall_score', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.Float(), nullable=False),
        sa.UniqueConstraint('lan_id', 'competition_id', name='uq_leaderboard_lan_competition'),
    )
    op.create_index('ix_leaderboard_lan_id', 'leaderboard', ['lan_id'])
    op.create_index('ix_leaderboard_competition_id', 'leaderboard', ['competition_id'])


def downgrade():
    op.drop_index('ix_leaderboard_competition_id', table_name='leaderboard')
    op.drop_index('ix_leaderboard_lan_id', table_name='leaderboard')
    op.drop_table('leaderboard')
    op.drop_index('ix_participant_competition_id', table_name='participant')
    op.drop_index('ix_participant_lan_id', table_name='participant')
    op.drop_table('participant')
    op.drop_index('ix_question_competition_id', table_name='question')
    op.drop_table('question')
    op.drop_table('competition')
