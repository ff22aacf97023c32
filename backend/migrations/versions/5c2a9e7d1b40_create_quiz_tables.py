"""create quiz, participant, block, question, answer and block_guess tables

Revision ID: 5c2a9e7d1b40
Revises:
Create Date: 2026-10-19 09:00:00

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c2a9e7d1b40'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    existing_tables = set(insp.get_table_names())

    if 'user' not in existing_tables:
        op.create_table(
            'user',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('username', sa.String(length=64), nullable=False),
            sa.Column('password_hash', sa.String(length=256), nullable=False),
        )
        op.create_index('ix_user_username', 'user', ['username'], unique=True)

    op.create_table(
        'quiz',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=12), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('host_user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('phase', sa.String(length=16), nullable=True),
        sa.Column('current_block_id', sa.Integer(), nullable=True),
        sa.Column('current_question_id', sa.Integer(), nullable=True),
        sa.Column('min_questions_per_player', sa.Integer(), nullable=False),
        sa.Column('suggested_questions_per_player', sa.Integer(), nullable=False),
        sa.Column('max_questions_per_player', sa.Integer(), nullable=False),
        sa.Column('enable_author_guessing', sa.Boolean(), nullable=False),
        sa.Column('is_archived', sa.Boolean(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_quiz_code', 'quiz', ['code'], unique=True)
    op.create_index('ix_quiz_host_user_id', 'quiz', ['host_user_id'])

    op.create_table(
        'participant',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('quiz_id', sa.Integer(), sa.ForeignKey('quiz.id'), nullable=False),
        sa.Column('display_name', sa.String(length=64), nullable=False),
        sa.Column('name_key', sa.String(length=64), nullable=False),
        sa.Column('device_token', sa.String(length=128), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('quiz_id', 'name_key', name='uq_participant_quiz_name'),
        sa.UniqueConstraint('quiz_id', 'device_token', name='uq_participant_quiz_token'),
    )
    op.create_index('ix_participant_quiz_id', 'participant', ['quiz_id'])

    op.create_table(
        'block',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('quiz_id', sa.Integer(), sa.ForeignKey('quiz.id'), nullable=False),
        sa.Column('author_type', sa.String(length=16), nullable=False),
        sa.Column('author_participant_id', sa.Integer(), sa.ForeignKey('participant.id'), nullable=True),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('order_index', sa.Integer(), nullable=True),
        sa.Column('is_locked', sa.Boolean(), nullable=False),
        sa.UniqueConstraint('quiz_id', 'author_participant_id', name='uq_block_quiz_author'),
    )
    op.create_index('ix_block_quiz_id', 'block', ['quiz_id'])

    op.create_table(
        'question',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('block_id', sa.Integer(), sa.ForeignKey('block.id'), nullable=False),
        sa.Column('index_in_block', sa.Integer(), nullable=False),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('type', sa.String(length=8), nullable=False),
        sa.Column('options', sa.Text(), nullable=True),
        sa.Column('correct_answer', sa.Text(), nullable=False),
        sa.Column('image_ref', sa.String(length=512), nullable=True),
        sa.UniqueConstraint('block_id', 'index_in_block', name='uq_question_block_index'),
    )
    op.create_index('ix_question_block_id', 'question', ['block_id'])

    # quiz points at block/question, which point back at quiz
    with op.batch_alter_table('quiz') as batch_op:
        batch_op.create_foreign_key('fk_quiz_current_block_id', 'block', ['current_block_id'], ['id'])
        batch_op.create_foreign_key('fk_quiz_current_question_id', 'question', ['current_question_id'], ['id'])

    op.create_table(
        'answer',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('quiz_id', sa.Integer(), sa.ForeignKey('quiz.id'), nullable=False),
        sa.Column('question_id', sa.Integer(), sa.ForeignKey('question.id'), nullable=False),
        sa.Column('participant_id', sa.Integer(), sa.ForeignKey('participant.id'), nullable=False),
        sa.Column('answer_text', sa.Text(), nullable=False),
        sa.Column('is_correct', sa.Boolean(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('question_id', 'participant_id', name='uq_answer_question_participant'),
    )
    op.create_index('ix_answer_quiz_id', 'answer', ['quiz_id'])

    op.create_table(
        'block_guess',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('quiz_id', sa.Integer(), sa.ForeignKey('quiz.id'), nullable=False),
        sa.Column('block_id', sa.Integer(), sa.ForeignKey('block.id'), nullable=False),
        sa.Column('guesser_id', sa.Integer(), sa.ForeignKey('participant.id'), nullable=False),
        sa.Column('guessed_participant_id', sa.Integer(), sa.ForeignKey('participant.id'), nullable=False),
        sa.Column('is_correct', sa.Boolean(), nullable=False),
        sa.UniqueConstraint('block_id', 'guesser_id', name='uq_guess_block_guesser'),
    )
    op.create_index('ix_block_guess_quiz_id', 'block_guess', ['quiz_id'])


def downgrade():
    op.drop_table('block_guess')
    op.drop_table('answer')
    with op.batch_alter_table('quiz') as batch_op:
        batch_op.drop_constraint('fk_quiz_current_question_id', type_='foreignkey')
        batch_op.drop_constraint('fk_quiz_current_block_id', type_='foreignkey')
    op.drop_table('question')
    op.drop_table('block')
    op.drop_table('participant')
    op.drop_table('quiz')
