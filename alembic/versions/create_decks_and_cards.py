"""create decks and cards tables

Revision ID: create_decks_and_cards
Revises:
Create Date: 2026-10-19

Creates the decks table (with progress counters) and the cards table
(with SM-2 scheduling fields).
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'create_decks_and_cards'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Get connection and inspector
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = inspector.get_table_names()

    if 'decks' not in existing_tables:
        op.create_table(
            'decks',
            sa.Column('id', sa.String(36), primary_key=True),
            sa.Column('title', sa.String(100), nullable=False, index=True),
            sa.Column('description', sa.Text(), nullable=True),
            sa.Column('owner_id', sa.String(36), nullable=False, index=True),
            sa.Column('is_public', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('tags', sa.JSON(), nullable=False),
            # Progress counters
            sa.Column('total_cards', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('progress_new', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('progress_learning', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('progress_mastered', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('last_studied_at', sa.DateTime(timezone=True), nullable=True),
            # Timestamps
            sa.Column(
                'created_at',
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.func.now()
            ),
            sa.Column(
                'updated_at',
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.func.now()
            ),
            sa.CheckConstraint('total_cards >= 0', name='ck_decks_total_cards_non_negative'),
            sa.CheckConstraint(
                'progress_new >= 0 AND progress_learning >= 0 AND progress_mastered >= 0',
                name='ck_decks_progress_non_negative',
            ),
        )

    if 'cards' not in existing_tables:
        op.create_table(
            'cards',
            sa.Column('id', sa.String(36), primary_key=True),
            sa.Column('front', sa.Text(), nullable=False),
            sa.Column('back', sa.Text(), nullable=False),
            sa.Column('hints', sa.JSON(), nullable=False),
            sa.Column('examples', sa.JSON(), nullable=False),
            sa.Column('tags', sa.JSON(), nullable=False),
            sa.Column('deck_id', sa.String(36), nullable=False, index=True),
            # SRS fields
            sa.Column('status', sa.String(8), nullable=False, server_default='new'),
            sa.Column('interval', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('ease_factor', sa.Float(), nullable=False, server_default='2.5'),
            sa.Column('repetitions', sa.Integer(), nullable=False, server_default='0'),
            sa.Column(
                'next_review_at',
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.func.now(),
            ),
            sa.Column('last_reviewed_at', sa.DateTime(timezone=True), nullable=True),
            # Timestamps
            sa.Column(
                'created_at',
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.func.now()
            ),
            sa.Column(
                'updated_at',
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.func.now()
            ),
            sa.ForeignKeyConstraint(
                ['deck_id'],
                ['decks.id'],
                name='fk_cards_deck_id',
                ondelete='CASCADE'
            ),
            sa.CheckConstraint('ease_factor >= 1.3', name='ck_cards_ease_factor_floor'),
            sa.CheckConstraint('"interval" >= 0 AND "interval" <= 365', name='ck_cards_interval_range'),
        )

        # Due-set query and status reconciliation
        op.create_index('ix_cards_deck_next_review', 'cards', ['deck_id', 'next_review_at'])
        op.create_index('ix_cards_deck_status', 'cards', ['deck_id', 'status'])


def downgrade() -> None:
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = inspector.get_table_names()

    if 'cards' in existing_tables:
        op.drop_index('ix_cards_deck_status', table_name='cards')
        op.drop_index('ix_cards_deck_next_review', table_name='cards')
        op.drop_table('cards')

    if 'decks' in existing_tables:
        op.drop_table('decks')
