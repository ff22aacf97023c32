from quizparty import db, bcrypt
from flask_login import UserMixin
from datetime import datetime, timezone
import json
import random

STATUS_CREATION = 'CREATION'
STATUS_PLAY = 'PLAY'
STATUS_FINISHED = 'FINISHED'

PHASE_QUESTION = 'QUESTION'
PHASE_AUTHOR_GUESS = 'AUTHOR_GUESS'
PHASE_AUTHOR_REVEAL = 'AUTHOR_REVEAL'
PHASE_GRADING = 'GRADING'

AUTHOR_HOST = 'host'
AUTHOR_PARTICIPANT = 'participant'

QUESTION_OPEN = 'open'
QUESTION_MCQ = 'mcq'

CODE_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'


def _utcnow():
    return datetime.now(timezone.utc)


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
        }


def generate_quiz_code(length=6):
    """Generate a unique join code without look-alike characters."""
    while True:
        code = ''.join(random.choices(CODE_ALPHABET, k=length))
        if not Quiz.query.filter_by(code=code).first():
            return code


class Quiz(db.Model):
    """One play-through. Mutated only by the phase controller."""
    __tablename__ = 'quiz'
    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(12), unique=True, index=True, nullable=False)
    name = db.Column(db.String(120), nullable=False, default='')
    host_user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default=STATUS_CREATION)
    phase = db.Column(db.String(16), nullable=True)
    current_block_id = db.Column(db.Integer, db.ForeignKey('block.id', name='fk_quiz_current_block_id', use_alter=True), nullable=True)
    current_question_id = db.Column(db.Integer, db.ForeignKey('question.id', name='fk_quiz_current_question_id', use_alter=True), nullable=True)
    min_questions_per_player = db.Column(db.Integer, nullable=False, default=1)
    suggested_questions_per_player = db.Column(db.Integer, nullable=False, default=3)
    max_questions_per_player = db.Column(db.Integer, nullable=False, default=10)
    enable_author_guessing = db.Column(db.Boolean, nullable=False, default=True)
    is_archived = db.Column(db.Boolean, nullable=False, default=False)
    version = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    participants = db.relationship('Participant', back_populates='quiz', order_by='Participant.id')
    blocks = db.relationship('Block', foreign_keys='Block.quiz_id', back_populates='quiz', order_by='Block.id')

    __mapper_args__ = {'version_id_col': version}

    def __init__(self, **kwargs):
        length = kwargs.pop('code_length', 6)
        super(Quiz, self).__init__(**kwargs)
        if not self.code:
            self.code = generate_quiz_code(length)

    def to_dict(self):
        return {
            'id': self.id,
            'code': self.code,
            'name': self.name,
            'host_user_id': self.host_user_id,
            'status': self.status,
            'phase': self.phase if self.status == STATUS_PLAY else None,
            'current_block_id': self.current_block_id,
            'current_question_id': self.current_question_id,
            'min_questions_per_player': self.min_questions_per_player,
            'suggested_questions_per_player': self.suggested_questions_per_player,
            'max_questions_per_player': self.max_questions_per_player,
            'enable_author_guessing': self.enable_author_guessing,
            'is_archived': self.is_archived,
            'version': self.version,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class Participant(db.Model):
    __tablename__ = 'participant'
    __table_args__ = (
        db.UniqueConstraint('quiz_id', 'name_key', name='uq_participant_quiz_name'),
        db.UniqueConstraint('quiz_id', 'device_token', name='uq_participant_quiz_token'),
    )
    id = db.Column(db.Integer, primary_key=True)
    quiz_id = db.Column(db.Integer, db.ForeignKey('quiz.id'), nullable=False, index=True)
    display_name = db.Column(db.String(64), nullable=False)
    # Comparison form of display_name (trimmed, whitespace collapsed, case-folded)
    name_key = db.Column(db.String(64), nullable=False)
    device_token = db.Column(db.String(128), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    quiz = db.relationship('Quiz', back_populates='participants')

    def to_dict(self, include_token=False):
        data = {
            'id': self.id,
            'quiz_id': self.quiz_id,
            'display_name': self.display_name,
        }
        if include_token:
            data['device_token'] = self.device_token
        return data


class Block(db.Model):
    __tablename__ = 'block'
    __table_args__ = (
        db.UniqueConstraint('quiz_id', 'author_participant_id', name='uq_block_quiz_author'),
    )
    id = db.Column(db.Integer, primary_key=True)
    quiz_id = db.Column(db.Integer, db.ForeignKey('quiz.id'), nullable=False, index=True)
    author_type = db.Column(db.String(16), nullable=False, default=AUTHOR_PARTICIPANT)
    author_participant_id = db.Column(db.Integer, db.ForeignKey('participant.id'), nullable=True)
    title = db.Column(db.String(200), nullable=False, default='')
    order_index = db.Column(db.Integer, nullable=True)
    is_locked = db.Column(db.Boolean, nullable=False, default=False)
    quiz = db.relationship('Quiz', foreign_keys=[quiz_id], back_populates='blocks')
    questions = db.relationship('Question', back_populates='block', order_by='Question.index_in_block')

    @property
    def is_host_block(self):
        return self.author_type == AUTHOR_HOST

    def to_dict(self, reveal_author=True):
        return {
            'id': self.id,
            'quiz_id': self.quiz_id,
            'author_type': self.author_type,
            'author_participant_id': self.author_participant_id if reveal_author else None,
            'title': self.title,
            'order_index': self.order_index,
            'is_locked': self.is_locked,
        }


class Question(db.Model):
    __tablename__ = 'question'
    __table_args__ = (
        db.UniqueConstraint('block_id', 'index_in_block', name='uq_question_block_index'),
    )
    id = db.Column(db.Integer, primary_key=True)
    block_id = db.Column(db.Integer, db.ForeignKey('block.id'), nullable=False, index=True)
    index_in_block = db.Column(db.Integer, nullable=False)
    text = db.Column(db.Text, nullable=False)
    type = db.Column(db.String(8), nullable=False, default=QUESTION_OPEN)
    options = db.Column(db.Text, nullable=True)  # JSON-encoded list of option strings
    correct_answer = db.Column(db.Text, nullable=False)
    image_ref = db.Column(db.String(512), nullable=True)
    block = db.relationship('Block', back_populates='questions')

    @property
    def option_list(self):
        if not self.options:
            return []
        return json.loads(self.options)

    def to_dict(self, include_solution=True):
        data = {
            'id': self.id,
            'block_id': self.block_id,
            'index_in_block': self.index_in_block,
            'text': self.text,
            'type': self.type,
            'options': self.option_list if self.type == QUESTION_MCQ else None,
            'image_ref': self.image_ref,
        }
        if include_solution:
            data['correct_answer'] = self.correct_answer
        return data


class Answer(db.Model):
    __tablename__ = 'answer'
    __table_args__ = (
        db.UniqueConstraint('question_id', 'participant_id', name='uq_answer_question_participant'),
    )
    id = db.Column(db.Integer, primary_key=True)
    quiz_id = db.Column(db.Integer, db.ForeignKey('quiz.id'), nullable=False, index=True)
    question_id = db.Column(db.Integer, db.ForeignKey('question.id'), nullable=False)
    participant_id = db.Column(db.Integer, db.ForeignKey('participant.id'), nullable=False)
    answer_text = db.Column(db.Text, nullable=False, default='')
    is_correct = db.Column(db.Boolean, nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'quiz_id': self.quiz_id,
            'question_id': self.question_id,
            'participant_id': self.participant_id,
            'answer_text': self.answer_text,
            'is_correct': self.is_correct,
        }


class BlockGuess(db.Model):
    __tablename__ = 'block_guess'
    __table_args__ = (
        db.UniqueConstraint('block_id', 'guesser_id', name='uq_guess_block_guesser'),
    )
    id = db.Column(db.Integer, primary_key=True)
    quiz_id = db.Column(db.Integer, db.ForeignKey('quiz.id'), nullable=False, index=True)
    block_id = db.Column(db.Integer, db.ForeignKey('block.id'), nullable=False)
    guesser_id = db.Column(db.Integer, db.ForeignKey('participant.id'), nullable=False)
    guessed_participant_id = db.Column(db.Integer, db.ForeignKey('participant.id'), nullable=False)
    is_correct = db.Column(db.Boolean, nullable=False, default=False)

    guesser = db.relationship('Participant', foreign_keys=[guesser_id])
    guessed_participant = db.relationship('Participant', foreign_keys=[guessed_participant_id])

    def to_dict(self):
        return {
            'id': self.id,
            'quiz_id': self.quiz_id,
            'block_id': self.block_id,
            'guesser_id': self.guesser_id,
            'guessed_participant_id': self.guessed_participant_id,
            'is_correct': self.is_correct,
        }
