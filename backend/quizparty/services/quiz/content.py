"""Authored blocks and questions: saving drafts, play order and locking."""

import json
import random
from collections import Counter
from typing import Any, Dict, List, Mapping, Optional, Sequence

from flask import current_app
from sqlalchemy.exc import IntegrityError

from quizparty import db
from quizparty.errors import ConflictError, LockedError, NotFoundError, ValidationError
from quizparty.models import (
    Block, Participant, Question, Quiz,
    AUTHOR_HOST, AUTHOR_PARTICIPANT, QUESTION_MCQ, QUESTION_OPEN, STATUS_CREATION,
)
from .machine import PlaylistBlock

MAX_TITLE_LENGTH = 200


def _text(value: Any) -> str:
    if value is None:
        return ''
    if not isinstance(value, str):
        raise ValidationError('Question fields must be text', entity='question')
    return value.strip()


def _clean_question(raw: Mapping[str, Any], position: int) -> Optional[Dict[str, Any]]:
    """Validate one submitted question; returns None for a blank draft row."""
    if not isinstance(raw, Mapping):
        raise ValidationError(f'Question {position} must be an object', entity='question')
    text = _text(raw.get('text'))
    if not text:
        return None
    qtype = raw.get('type') or QUESTION_OPEN
    if qtype not in (QUESTION_OPEN, QUESTION_MCQ):
        raise ValidationError(f'Question {position}: unknown type {qtype!r}', entity='question')
    correct = _text(raw.get('correct_answer'))
    options = None
    if qtype == QUESTION_MCQ:
        raw_options = raw.get('options') or []
        if not isinstance(raw_options, list):
            raise ValidationError(f'Question {position}: options must be a list', entity='question')
        options = [o for o in (_text(o) for o in raw_options) if o]
        if len(options) < 2:
            raise ValidationError(f'Question {position}: multiple choice needs at least 2 options', entity='question')
        if correct not in options:
            raise ValidationError(f'Question {position}: pick the correct option', entity='question')
    elif not correct:
        raise ValidationError(f'Question {position}: a correct answer is required', entity='question')
    image_ref = raw.get('image_ref')
    if image_ref is not None and not isinstance(image_ref, str):
        raise ValidationError(f'Question {position}: image_ref must be a string', entity='question')
    return {
        'text': text,
        'type': qtype,
        'options': options,
        'correct_answer': correct,
        'image_ref': image_ref or None,
    }


def _find_host_block(quiz: Quiz, block_id: int) -> Block:
    block = Block.query.filter_by(id=block_id, quiz_id=quiz.id, author_type=AUTHOR_HOST).first()
    if not block:
        raise NotFoundError('Host block not found', entity='block')
    return block


def save_block(quiz: Quiz, author: Optional[Participant], title: Any, questions: Any, block_id: Optional[int] = None) -> Block:
    """Create or update a block and fully replace its questions.

    ``author`` is the participant saving their own block, or None for the
    host. The host gets a new block on every save without ``block_id``.
    """
    if quiz.status != STATUS_CREATION:
        raise LockedError('Quiz content is locked', entity='block', action='save_block')
    if not isinstance(title, str) or not title.strip():
        raise ValidationError('Block title is required', entity='block')
    title = title.strip()
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationError(f'Block title is limited to {MAX_TITLE_LENGTH} characters', entity='block')
    if not isinstance(questions, list):
        raise ValidationError('questions must be a list', entity='block')

    cleaned = []
    for pos, raw in enumerate(questions, start=1):
        item = _clean_question(raw, pos)
        if item:
            cleaned.append(item)

    if author is None:
        if block_id is not None:
            block = _find_host_block(quiz, block_id)
        else:
            block = Block(quiz_id=quiz.id, author_type=AUTHOR_HOST, author_participant_id=None)
    else:
        block = Block.query.filter_by(quiz_id=quiz.id, author_participant_id=author.id).first()
        if block is None:
            block = Block(quiz_id=quiz.id, author_type=AUTHOR_PARTICIPANT, author_participant_id=author.id)
    if block.is_locked:
        raise LockedError('This block is locked', entity='block', action='save_block')

    block.title = title
    db.session.add(block)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError('Block was created concurrently, please retry', entity='block', action='save_block')

    # Bulk delete first so re-indexing never collides with the old rows
    Question.query.filter_by(block_id=block.id).delete(synchronize_session=False)
    for index, item in enumerate(cleaned):
        db.session.add(Question(
            block_id=block.id,
            index_in_block=index,
            text=item['text'],
            type=item['type'],
            options=json.dumps(item['options']) if item['options'] is not None else None,
            correct_answer=item['correct_answer'],
            image_ref=item['image_ref'],
        ))
    db.session.commit()
    current_app.logger.info(f"[save_block] quiz={quiz.id} block={block.id} questions={len(cleaned)}")
    return block


def ordered_blocks(quiz: Quiz) -> List[Block]:
    """Host blocks first, then participant blocks, each by committed order."""
    blocks = Block.query.filter_by(quiz_id=quiz.id).all()

    def sort_key(b: Block):
        order = b.order_index if b.order_index is not None else 1 << 30
        return (0 if b.is_host_block else 1, order, b.id)

    return sorted(blocks, key=sort_key)


def questions_by_block(quiz: Quiz) -> Dict[int, List[Question]]:
    rows = (
        Question.query.join(Block, Question.block_id == Block.id)
        .filter(Block.quiz_id == quiz.id)
        .order_by(Question.block_id, Question.index_in_block)
        .all()
    )
    grouped: Dict[int, List[Question]] = {}
    for q in rows:
        grouped.setdefault(q.block_id, []).append(q)
    return grouped


def has_guess_round(quiz: Quiz, block: Block) -> bool:
    return bool(quiz.enable_author_guessing) and not block.is_host_block


def build_playlist(quiz: Quiz, blocks: Optional[Sequence[Block]] = None) -> List[PlaylistBlock]:
    if blocks is None:
        blocks = ordered_blocks(quiz)
    grouped = questions_by_block(quiz)
    return [
        PlaylistBlock(
            block_id=b.id,
            question_ids=tuple(q.id for q in grouped.get(b.id, [])),
            has_guess_round=has_guess_round(quiz, b),
        )
        for b in blocks
    ]


def question_total(quiz: Quiz) -> int:
    return sum(len(qs) for qs in questions_by_block(quiz).values())


def question_count_violations(quiz: Quiz) -> List[str]:
    """Participants whose authored question count is outside [min, max]."""
    counts = Counter()
    authors = {}
    grouped = questions_by_block(quiz)
    for block in Block.query.filter_by(quiz_id=quiz.id, author_type=AUTHOR_PARTICIPANT).all():
        counts[block.author_participant_id] += len(grouped.get(block.id, []))
        authors[block.author_participant_id] = block
    violations = []
    lo, hi = quiz.min_questions_per_player, quiz.max_questions_per_player
    for participant in Participant.query.filter_by(quiz_id=quiz.id).order_by(Participant.id).all():
        if participant.id not in authors:
            continue
        n = counts[participant.id]
        if n < lo or n > hi:
            violations.append(f'{participant.display_name} has {n} questions (allowed {lo}-{hi})')
    return violations


def lock_and_order_blocks(quiz: Quiz, shuffle: bool, rng: Optional[random.Random] = None) -> List[Block]:
    """Commit the play order: host blocks first, participant blocks optionally shuffled.

    Does not commit the transaction; the caller owns it.
    """
    blocks = Block.query.filter_by(quiz_id=quiz.id).order_by(Block.id).all()
    host_blocks = [b for b in blocks if b.is_host_block]
    participant_blocks = [b for b in blocks if not b.is_host_block]
    if shuffle and len(participant_blocks) > 1:
        rng = rng or random.SystemRandom()
        # Fisher-Yates
        for i in range(len(participant_blocks) - 1, 0, -1):
            j = rng.randint(0, i)
            participant_blocks[i], participant_blocks[j] = participant_blocks[j], participant_blocks[i]
    ordered = host_blocks + participant_blocks
    for index, block in enumerate(ordered):
        block.order_index = index
        block.is_locked = True
        db.session.add(block)
    return ordered
