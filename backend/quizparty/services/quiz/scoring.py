"""Answer and guess correctness, manual grading and score aggregation.

Answers and guesses are written as row-scoped upserts keyed by their natural
unique constraint, never by rewriting a whole collection.
"""

from dataclasses import asdict, dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from flask import current_app
from sqlalchemy.exc import IntegrityError

from quizparty import db
from quizparty.errors import ConflictError, NotFoundError, PreconditionError, ValidationError
from quizparty.models import (
    Answer, Block, BlockGuess, Participant, Question, Quiz,
    PHASE_AUTHOR_GUESS, PHASE_GRADING, QUESTION_MCQ, QUESTION_OPEN,
    STATUS_FINISHED, STATUS_PLAY,
)
from .actions import GradeItem
from .content import has_guess_round, ordered_blocks, questions_by_block
from .identity import clean_display_name


@dataclass
class ScoreBreakdown:
    participant_id: int
    display_name: str
    correct_answers: int
    correct_guesses: int
    question_points: int
    guess_points: int
    total: int
    max_question_points: int
    max_guess_points: int

    def to_dict(self):
        return asdict(self)


@dataclass
class BlockAccuracy:
    block_id: int
    title: str
    correct: int
    total: int
    accuracy: float

    def to_dict(self):
        return asdict(self)


def _upsert(lookup: Callable[[], Optional[object]], create: Callable[[], object], update: Callable[[object], None], entity: str):
    """Insert-or-update one row; a lost insert race updates the winner's row instead."""
    for _ in range(2):
        row = lookup()
        if row is None:
            row = create()
        else:
            update(row)
        db.session.add(row)
        try:
            db.session.commit()
            return row
        except IntegrityError:
            db.session.rollback()
    raise ConflictError(f'Concurrent write on {entity}, please retry', entity=entity)


def _question_reached(quiz: Quiz, question: Question, block: Block) -> bool:
    if quiz.current_block_id is None or block.order_index is None:
        return False
    current = db.session.get(Block, quiz.current_block_id)
    if current is None or block.order_index > current.order_index:
        return False
    if block.order_index < current.order_index or quiz.current_question_id is None:
        return True
    asked = db.session.get(Question, quiz.current_question_id)
    return asked is not None and question.index_in_block <= asked.index_in_block


def _require_open_play(quiz: Quiz, action: str) -> None:
    if quiz.is_archived:
        raise PreconditionError('quiz is archived', entity='quiz', action=action)
    if quiz.status != STATUS_PLAY or quiz.phase == PHASE_GRADING:
        raise PreconditionError(f'{action} is closed', entity='quiz', action=action)


def _check_membership(quiz: Quiz, participant: Participant, entity: str = 'participant') -> None:
    if participant is None or participant.quiz_id != quiz.id:
        raise NotFoundError('Participant not found in this quiz', entity=entity)


def record_answer(quiz: Quiz, question: Question, participant: Participant, text) -> Answer:
    """Store a participant's answer, replacing any previous one.

    mcq answers are re-marked on every call. Open answers start ungraded and
    keep an existing manual grade on resubmission, unless
    ``RESET_GRADE_ON_ANSWER_EDIT`` is set and the text changed.
    """
    _require_open_play(quiz, 'answering')
    _check_membership(quiz, participant)
    block = question.block if question else None
    if block is None or block.quiz_id != quiz.id:
        raise NotFoundError('Question not found in this quiz', entity='question')
    if block.author_participant_id == participant.id:
        raise ValidationError('You cannot answer your own questions', entity='answer')
    if not _question_reached(quiz, question, block):
        raise PreconditionError('question has not been asked yet', entity='question', action='answer')
    if not isinstance(text, str):
        raise ValidationError('answer_text must be text', entity='answer')
    text = text.strip()
    reset_on_edit = bool(current_app.config.get('RESET_GRADE_ON_ANSWER_EDIT', False))

    def lookup():
        return Answer.query.filter_by(question_id=question.id, participant_id=participant.id).first()

    def create():
        return Answer(
            quiz_id=quiz.id,
            question_id=question.id,
            participant_id=participant.id,
            answer_text=text,
            is_correct=(text == question.correct_answer) if question.type == QUESTION_MCQ else None,
        )

    def update(answer):
        if question.type == QUESTION_MCQ:
            answer.is_correct = text == question.correct_answer
        elif reset_on_edit and answer.answer_text != text:
            answer.is_correct = None
        answer.answer_text = text

    return _upsert(lookup, create, update, 'answer')


def grade_answer(quiz: Quiz, question: Question, participant: Participant, correct: bool) -> Answer:
    """Host override of an open answer's correctness."""
    if quiz.status not in (STATUS_PLAY, STATUS_FINISHED):
        raise PreconditionError('quiz has not started', entity='quiz', action='grade')
    if question is None or question.block.quiz_id != quiz.id:
        raise NotFoundError('Question not found in this quiz', entity='question')
    if question.type != QUESTION_OPEN:
        raise ValidationError('Only open questions are graded manually', entity='answer', action='grade')
    _check_membership(quiz, participant)
    answer = Answer.query.filter_by(question_id=question.id, participant_id=participant.id).first()
    if answer is None:
        raise NotFoundError('Answer not found', entity='answer')
    answer.is_correct = bool(correct)
    db.session.add(answer)
    db.session.commit()
    return answer


def record_guess(quiz: Quiz, block: Block, guesser: Participant, guessed: Participant) -> BlockGuess:
    """Store the guesser's pick for the block's author, replacing a previous pick."""
    _require_open_play(quiz, 'guessing')
    if block is None or block.quiz_id != quiz.id:
        raise NotFoundError('Block not found in this quiz', entity='block')
    _check_membership(quiz, guesser)
    _check_membership(quiz, guessed, entity='guessed_participant')
    if not has_guess_round(quiz, block):
        raise PreconditionError('this block has no author guessing', entity='block', action='guess')
    if guesser.id == block.author_participant_id:
        raise ValidationError('You cannot guess your own block', entity='guess')
    if quiz.current_block_id != block.id or quiz.phase != PHASE_AUTHOR_GUESS:
        raise PreconditionError('author guessing is not open for this block', entity='block', action='guess')
    is_correct = guessed.id == block.author_participant_id

    def lookup():
        return BlockGuess.query.filter_by(block_id=block.id, guesser_id=guesser.id).first()

    def create():
        return BlockGuess(
            quiz_id=quiz.id,
            block_id=block.id,
            guesser_id=guesser.id,
            guessed_participant_id=guessed.id,
            is_correct=is_correct,
        )

    def update(guess):
        guess.guessed_participant_id = guessed.id
        guess.is_correct = is_correct

    return _upsert(lookup, create, update, 'guess')


def _weights(weight_question: Optional[int], weight_guess: Optional[int]) -> Tuple[int, int]:
    cfg = current_app.config
    if weight_question is None:
        weight_question = int(cfg.get('SCORE_WEIGHT_QUESTION', 1))
    if weight_guess is None:
        weight_guess = int(cfg.get('SCORE_WEIGHT_GUESS', 1))
    return weight_question, weight_guess


def compute_scores(quiz: Quiz, weight_question: Optional[int] = None, weight_guess: Optional[int] = None) -> List[ScoreBreakdown]:
    """Per-participant totals, highest first; ties keep join order."""
    wq, wg = _weights(weight_question, weight_guess)
    participants = Participant.query.filter_by(quiz_id=quiz.id).order_by(Participant.id).all()
    blocks = Block.query.filter_by(quiz_id=quiz.id).all()
    grouped = questions_by_block(quiz)
    all_questions = sum(len(qs) for qs in grouped.values())
    guessable = [b for b in blocks if has_guess_round(quiz, b)]

    answer_hits: Dict[int, int] = {}
    for a in Answer.query.filter_by(quiz_id=quiz.id, is_correct=True).all():
        answer_hits[a.participant_id] = answer_hits.get(a.participant_id, 0) + 1
    guess_hits: Dict[int, int] = {}
    for g in BlockGuess.query.filter_by(quiz_id=quiz.id, is_correct=True).all():
        guess_hits[g.guesser_id] = guess_hits.get(g.guesser_id, 0) + 1

    scores = []
    for p in participants:
        own = [b for b in blocks if b.author_participant_id == p.id]
        own_questions = sum(len(grouped.get(b.id, [])) for b in own)
        correct_answers = answer_hits.get(p.id, 0)
        correct_guesses = guess_hits.get(p.id, 0)
        question_points = correct_answers * wq
        guess_points = correct_guesses * wg
        scores.append(ScoreBreakdown(
            participant_id=p.id,
            display_name=p.display_name,
            correct_answers=correct_answers,
            correct_guesses=correct_guesses,
            question_points=question_points,
            guess_points=guess_points,
            total=question_points + guess_points,
            max_question_points=(all_questions - own_questions) * wq,
            max_guess_points=len([b for b in guessable if b.author_participant_id != p.id]) * wg,
        ))
    # sorted() is stable, so equal totals stay in join order
    return sorted(scores, key=lambda s: s.total, reverse=True)


def block_accuracy(quiz: Quiz) -> List[BlockAccuracy]:
    grouped = questions_by_block(quiz)
    answers = Answer.query.filter_by(quiz_id=quiz.id).all()
    stats = []
    for block in ordered_blocks(quiz):
        qids = {q.id for q in grouped.get(block.id, [])}
        block_answers = [a for a in answers if a.question_id in qids]
        correct = len([a for a in block_answers if a.is_correct])
        total = len(block_answers)
        stats.append(BlockAccuracy(
            block_id=block.id,
            title=block.title,
            correct=correct,
            total=total,
            accuracy=(correct / total) if total else 0.0,
        ))
    return stats


def hardest_and_easiest(stats: Iterable[BlockAccuracy]) -> Tuple[Optional[BlockAccuracy], Optional[BlockAccuracy]]:
    answered = [s for s in stats if s.total > 0]
    if not answered:
        return None, None
    hardest = min(answered, key=lambda s: s.accuracy)
    easiest = max(answered, key=lambda s: s.accuracy)
    return hardest, easiest


def list_ungraded_open_answers(quiz: Quiz) -> List[dict]:
    """Blind grading view: ungraded open answers grouped by question.

    Entries carry only the answer text and an opaque grading key, never the
    participant. Identical answers sort next to each other.
    """
    rows = (
        db.session.query(Answer, Question)
        .join(Question, Answer.question_id == Question.id)
        .filter(Answer.quiz_id == quiz.id, Question.type == QUESTION_OPEN, Answer.is_correct.is_(None))
        .all()
    )
    by_question: Dict[int, dict] = {}
    for answer, question in rows:
        group = by_question.setdefault(question.id, {
            'question_id': question.id,
            'text': question.text,
            'correct_answer': question.correct_answer,
            'answers': [],
        })
        group['answers'].append({'grading_key': answer.id, 'answer_text': answer.answer_text})

    order = {}
    for block in ordered_blocks(quiz):
        for q in block.questions:
            order[q.id] = (block.order_index if block.order_index is not None else 0, q.index_in_block)
    groups = sorted(by_question.values(), key=lambda g: order.get(g['question_id'], (0, 0)))
    for group in groups:
        group['answers'].sort(key=lambda e: (clean_display_name(e['answer_text']).casefold(), e['grading_key']))
    return groups


def count_ungraded_open_answers(quiz: Quiz) -> int:
    return (
        Answer.query.join(Question, Answer.question_id == Question.id)
        .filter(Answer.quiz_id == quiz.id, Question.type == QUESTION_OPEN, Answer.is_correct.is_(None))
        .count()
    )


def _resolve_grade_target(quiz: Quiz, item: GradeItem) -> Answer:
    if item.grading_key is not None:
        answer = Answer.query.filter_by(id=item.grading_key, quiz_id=quiz.id).first()
    else:
        answer = Answer.query.filter_by(
            quiz_id=quiz.id, question_id=item.question_id, participant_id=item.participant_id,
        ).first()
    if answer is None:
        raise NotFoundError('Answer not found for grading', entity='answer', action='grade')
    question = db.session.get(Question, answer.question_id)
    if question.type != QUESTION_OPEN:
        raise ValidationError('Only open questions are graded manually', entity='answer', action='grade')
    return answer


def apply_grading_batch(quiz: Quiz, items: Iterable[GradeItem]) -> int:
    """Resolve every grade before writing any; the caller commits."""
    resolved = [(_resolve_grade_target(quiz, item), item.correct) for item in items]
    for answer, correct in resolved:
        answer.is_correct = correct
        db.session.add(answer)
    return len(resolved)


def submit_grading_batch(quiz: Quiz, items: Iterable[GradeItem]) -> int:
    if quiz.status not in (STATUS_PLAY, STATUS_FINISHED):
        raise PreconditionError('quiz has not started', entity='quiz', action='grade')
    try:
        count = apply_grading_batch(quiz, items)
    except Exception:
        db.session.rollback()
        raise
    db.session.commit()
    current_app.logger.info(f"[grading] quiz={quiz.id} graded={count}")
    return count
