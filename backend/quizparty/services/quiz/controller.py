"""Session phase controller.

Each action runs as one transaction against the quiz row: the row is loaded
under a row lock, the pure state machine computes the next snapshot, side
effects are applied, and everything commits together. The quiz's version
column turns a concurrent write into ``ConflictError`` instead of a silent
overwrite.
"""

import time
from typing import List, Optional

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from quizparty import db
from quizparty.errors import ConflictError, NotFoundError, PreconditionError, ValidationError
from quizparty.models import Answer, BlockGuess, Participant, Quiz, User, STATUS_PLAY
from . import machine
from .actions import Action, Finish, Restart, StartGame
from .content import build_playlist, lock_and_order_blocks, question_count_violations, question_total
from .scoring import apply_grading_batch, count_ungraded_open_answers


def snapshot_of(quiz: Quiz) -> machine.Snapshot:
    return machine.Snapshot(
        status=quiz.status,
        phase=quiz.phase if quiz.status == STATUS_PLAY else None,
        current_block_id=quiz.current_block_id,
        current_question_id=quiz.current_question_id,
    )


def _apply_snapshot(quiz: Quiz, snapshot: machine.Snapshot) -> None:
    quiz.status = snapshot.status
    quiz.phase = snapshot.phase
    quiz.current_block_id = snapshot.current_block_id
    quiz.current_question_id = snapshot.current_question_id


def _int_setting(settings: dict, key: str, default: int) -> int:
    raw = settings.get(key)
    if raw is None:
        return int(default)
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise ValidationError(f"'{key}' must be an integer", entity='quiz')
    return raw


def create_quiz(host: User, settings: Optional[dict] = None) -> Quiz:
    """Create a quiz for ``host`` and archive the host's earlier quizzes."""
    settings = settings or {}
    cfg = current_app.config
    name = settings.get('name') or ''
    if not isinstance(name, str):
        raise ValidationError("'name' must be text", entity='quiz')
    min_q = _int_setting(settings, 'min_questions_per_player', cfg.get('DEFAULT_MIN_QUESTIONS', 1))
    suggested_q = _int_setting(settings, 'suggested_questions_per_player', cfg.get('DEFAULT_SUGGESTED_QUESTIONS', 3))
    max_q = _int_setting(settings, 'max_questions_per_player', cfg.get('DEFAULT_MAX_QUESTIONS', 10))
    guessing = settings.get('enable_author_guessing', True)
    if not isinstance(guessing, bool):
        raise ValidationError("'enable_author_guessing' must be a boolean", entity='quiz')
    if min_q < 1:
        raise ValidationError('min_questions_per_player must be >= 1', entity='quiz')
    if suggested_q < min_q:
        raise ValidationError('suggested_questions_per_player must be >= min_questions_per_player', entity='quiz')
    if max_q < suggested_q:
        raise ValidationError('max_questions_per_player must be >= suggested_questions_per_player', entity='quiz')

    Quiz.query.filter_by(host_user_id=host.id, is_archived=False).update(
        {'is_archived': True}, synchronize_session=False,
    )
    quiz = Quiz(
        code_length=int(cfg.get('QUIZ_CODE_LENGTH', 6)),
        name=name.strip(),
        host_user_id=host.id,
        min_questions_per_player=min_q,
        suggested_questions_per_player=suggested_q,
        max_questions_per_player=max_q,
        enable_author_guessing=guessing,
    )
    db.session.add(quiz)
    db.session.commit()
    current_app.logger.info(f"[create] quiz={quiz.id} code={quiz.code} host={host.id}")
    return quiz


def list_host_quizzes(host_user_id: int) -> List[Quiz]:
    return (
        Quiz.query.filter_by(host_user_id=host_user_id)
        .order_by(Quiz.created_at.desc(), Quiz.id.desc())
        .all()
    )


def get_quiz_by_code(code: Optional[str]) -> Quiz:
    quiz = Quiz.query.filter_by(code=(code or '').strip().upper()).first()
    if quiz is None:
        raise NotFoundError('Quiz not found', entity='quiz')
    return quiz


def _load_for_update(quiz_id: int) -> Quiz:
    """Lock the quiz row, retrying within the configured budget."""
    cfg = current_app.config
    retries = int(cfg.get('TRANSITION_LOCK_RETRIES', 3))
    backoff_ms = int(cfg.get('TRANSITION_LOCK_BACKOFF_MS', 50))
    for attempt in range(retries + 1):
        try:
            quiz = (
                Quiz.query.filter_by(id=quiz_id)
                .populate_existing()
                .with_for_update(nowait=True)
                .one_or_none()
            )
        except OperationalError:
            db.session.rollback()
            current_app.logger.info(f"[lock-busy] quiz={quiz_id} attempt={attempt + 1}")
            if attempt < retries:
                time.sleep(backoff_ms * (attempt + 1) / 1000.0)
            continue
        if quiz is None:
            raise NotFoundError('Quiz not found', entity='quiz')
        return quiz
    raise ConflictError('Quiz is busy with another action, please retry', entity='quiz')


def _run(quiz: Quiz, action: Action) -> machine.Snapshot:
    snapshot = snapshot_of(quiz)
    if isinstance(action, StartGame):
        participant_count = Participant.query.filter_by(quiz_id=quiz.id).count()
        machine.check_start(snapshot, participant_count, question_total(quiz), question_count_violations(quiz))
        playlist = build_playlist(quiz, lock_and_order_blocks(quiz, action.shuffle))
    else:
        playlist = build_playlist(quiz)

    target = machine.transition(snapshot, action, playlist)

    if isinstance(action, Finish):
        apply_grading_batch(quiz, action.grades)
        if current_app.config.get('REQUIRE_COMPLETE_GRADING') and count_ungraded_open_answers(quiz):
            raise PreconditionError('ungraded open answers remain', entity='quiz', action=action.name.value)
    if isinstance(action, Restart):
        Answer.query.filter_by(quiz_id=quiz.id).delete(synchronize_session=False)
        BlockGuess.query.filter_by(quiz_id=quiz.id).delete(synchronize_session=False)
    _apply_snapshot(quiz, target)
    return target


def perform_action(quiz_id: int, action: Action) -> Quiz:
    """Run one host action atomically and return the committed quiz."""
    quiz = _load_for_update(quiz_id)
    name = action.name.value
    before = snapshot_of(quiz)
    try:
        if quiz.is_archived:
            raise PreconditionError('quiz is archived', entity='quiz', action=name)
        if action.expected_version is not None and action.expected_version != quiz.version:
            raise ConflictError(
                f'Quiz changed (version {quiz.version}, expected {action.expected_version})',
                entity='quiz', action=name,
            )
        after = _run(quiz, action)
        db.session.add(quiz)
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        raise ConflictError('Quiz was changed by a concurrent action', entity='quiz', action=name)
    except Exception:
        db.session.rollback()
        raise
    current_app.logger.info(
        f"[action] quiz={quiz.id} {name} {before.status}/{before.phase} -> {after.status}/{after.phase} "
        f"block={after.current_block_id} question={after.current_question_id} version={quiz.version}"
    )
    return quiz
