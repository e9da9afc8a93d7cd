"""create session tables

Revision ID: 5b7c0e9d2a41
Revises:
Create Date: 2026-10-19 00:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5b7c0e9d2a41'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'match_session',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('join_code', sa.String(length=12), nullable=False),
        sa.Column('mode', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('round', sa.Integer(), nullable=False),
        sa.Column('min_participants', sa.Integer(), nullable=False),
        sa.Column('max_participants', sa.Integer(), nullable=True),
        sa.Column('round1_limit', sa.Integer(), nullable=False),
        sa.Column('round2_limit', sa.Integer(), nullable=False),
        sa.Column('superlikes_per_round', sa.Integer(), nullable=False),
        sa.Column('host_participant_id', sa.String(length=64), nullable=False),
        sa.Column('pool', sa.Text(), nullable=True),
        sa.Column('round2_deck', sa.Text(), nullable=True),
        sa.Column('preferences', sa.Text(), nullable=True),
        sa.Column('winner_candidate_id', sa.String(length=64), nullable=True),
        sa.Column('cancel_reason', sa.String(length=32), nullable=True),
        sa.Column('previous_session_id', sa.String(length=36), nullable=True),
        sa.Column('round_started_at', sa.Float(), nullable=True),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.Column('updated_at', sa.Float(), nullable=False),
        sa.ForeignKeyConstraint(['previous_session_id'], ['match_session.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('previous_session_id'),
    )
    op.create_index('ix_match_session_join_code', 'match_session', ['join_code'])

    op.create_table(
        'participant',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.String(length=36), nullable=False),
        sa.Column('participant_id', sa.String(length=64), nullable=False),
        sa.Column('display_name', sa.String(length=64), nullable=True),
        sa.Column('is_host', sa.Boolean(), nullable=False),
        sa.Column('is_synthetic', sa.Boolean(), nullable=False),
        sa.Column('joined_at', sa.Float(), nullable=False),
        sa.Column('last_seen_at', sa.Float(), nullable=False),
        sa.ForeignKeyConstraint(['session_id'], ['match_session.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('session_id', 'participant_id', name='uq_participant_session'),
    )
    op.create_index('ix_participant_session_id', 'participant', ['session_id'])

    op.create_table(
        'swipe',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.String(length=36), nullable=False),
        sa.Column('participant_id', sa.String(length=64), nullable=False),
        sa.Column('candidate_id', sa.String(length=64), nullable=False),
        sa.Column('round', sa.Integer(), nullable=False),
        sa.Column('decision', sa.String(length=16), nullable=False),
        sa.Column('decided_at', sa.Float(), nullable=False),
        sa.Column('updated_at', sa.Float(), nullable=False),
        sa.ForeignKeyConstraint(['session_id'], ['match_session.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('session_id', 'participant_id', 'candidate_id', 'round', name='uq_swipe_decision'),
    )
    op.create_index('ix_swipe_session_id', 'swipe', ['session_id'])

    op.create_table(
        'final_vote',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.String(length=36), nullable=False),
        sa.Column('participant_id', sa.String(length=64), nullable=False),
        sa.Column('candidate_id', sa.String(length=64), nullable=False),
        sa.Column('cast_at', sa.Float(), nullable=False),
        sa.ForeignKeyConstraint(['session_id'], ['match_session.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('session_id', 'participant_id', name='uq_final_vote'),
    )
    op.create_index('ix_final_vote_session_id', 'final_vote', ['session_id'])

    op.create_table(
        'round_result',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.String(length=36), nullable=False),
        sa.Column('round', sa.Integer(), nullable=False),
        sa.Column('outcome', sa.String(length=16), nullable=False),
        sa.Column('matches', sa.Text(), nullable=True),
        sa.Column('winner_candidate_id', sa.String(length=64), nullable=True),
        sa.Column('compromise_candidate_id', sa.String(length=64), nullable=True),
        sa.Column('computed_at', sa.Float(), nullable=False),
        sa.ForeignKeyConstraint(['session_id'], ['match_session.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('session_id', 'round', name='uq_round_result'),
    )
    op.create_index('ix_round_result_session_id', 'round_result', ['session_id'])


def downgrade():
    op.drop_index('ix_round_result_session_id', table_name='round_result')
    op.drop_table('round_result')
    op.drop_index('ix_final_vote_session_id', table_name='final_vote')
    op.drop_table('final_vote')
    op.drop_index('ix_swipe_session_id', table_name='swipe')
    op.drop_table('swipe')
    op.drop_index('ix_participant_session_id', table_name='participant')
    op.drop_table('participant')
    op.drop_index('ix_match_session_join_code', table_name='match_session')
    op.drop_table('match_session')
