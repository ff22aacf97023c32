"""Phase state machine for a quiz.

Pure logic: ``transition(snapshot, action, playlist)`` returns the next
snapshot or raises ``PreconditionError``. No database access happens here;
the controller loads the snapshot, runs the machine and persists the result.
"""

from dataclasses import dataclass, replace
from typing import Optional, Sequence, Tuple

from quizparty.errors import PreconditionError
from quizparty.models import (
    STATUS_CREATION, STATUS_PLAY, STATUS_FINISHED,
    PHASE_QUESTION, PHASE_AUTHOR_GUESS, PHASE_AUTHOR_REVEAL, PHASE_GRADING,
)
from .actions import Action, Advance, Back, Finish, Reveal, Restart, StartGame


@dataclass(frozen=True)
class PlaylistBlock:
    block_id: int
    question_ids: Tuple[int, ...]
    has_guess_round: bool


@dataclass(frozen=True)
class Snapshot:
    status: str
    phase: Optional[str] = None
    current_block_id: Optional[int] = None
    current_question_id: Optional[int] = None


Playlist = Sequence[PlaylistBlock]


def _fail(guard: str, action) -> None:
    raise PreconditionError(guard, entity='quiz', action=action.name.value)


def check_start(snapshot: Snapshot, participant_count: int, question_count: int, limit_violations=()) -> None:
    """Guards for START_GAME that depend on data outside the playlist."""
    action = StartGame()
    if snapshot.status != STATUS_CREATION:
        _fail('content locked: quiz already started', action)
    if participant_count < 1:
        _fail('no participants', action)
    if question_count < 1:
        _fail('no questions', action)
    if limit_violations:
        _fail('question limits: ' + '; '.join(limit_violations), action)


def _block_index(playlist: Playlist, snapshot: Snapshot, action) -> int:
    for idx, block in enumerate(playlist):
        if block.block_id == snapshot.current_block_id:
            return idx
    _fail('current block is not part of the play order', action)


def _enter(playlist: Playlist, idx: int) -> Snapshot:
    # Empty blocks without a guess round are skipped entirely
    while idx < len(playlist):
        block = playlist[idx]
        if block.question_ids:
            return Snapshot(STATUS_PLAY, PHASE_QUESTION, block.block_id, block.question_ids[0])
        if block.has_guess_round:
            return Snapshot(STATUS_PLAY, PHASE_AUTHOR_GUESS, block.block_id, None)
        idx += 1
    last_id = playlist[-1].block_id if playlist else None
    return Snapshot(STATUS_PLAY, PHASE_GRADING, last_id, None)


def _exit_position(playlist: Playlist, idx: int) -> Optional[Snapshot]:
    """Where BACK lands when stepping out of the block after ``idx``."""
    while idx >= 0:
        block = playlist[idx]
        if block.has_guess_round:
            return Snapshot(STATUS_PLAY, PHASE_AUTHOR_REVEAL, block.block_id, None)
        if block.question_ids:
            return Snapshot(STATUS_PLAY, PHASE_QUESTION, block.block_id, block.question_ids[-1])
        idx -= 1
    return None


def _advance(snapshot: Snapshot, action: Advance, playlist: Playlist) -> Snapshot:
    if snapshot.phase == PHASE_AUTHOR_GUESS:
        _fail('reveal required before advancing', action)
    if snapshot.phase == PHASE_GRADING:
        _fail('already grading: finish the quiz instead', action)

    idx = _block_index(playlist, snapshot, action)
    block = playlist[idx]
    if snapshot.phase == PHASE_QUESTION:
        qs = block.question_ids
        if snapshot.current_question_id in qs:
            pos = qs.index(snapshot.current_question_id)
            if pos < len(qs) - 1:
                return replace(snapshot, current_question_id=qs[pos + 1])
        if block.has_guess_round:
            return Snapshot(STATUS_PLAY, PHASE_AUTHOR_GUESS, block.block_id, None)
    target = _enter(playlist, idx + 1)
    if target.phase == PHASE_GRADING and not action.confirm:
        _fail('confirmation required to end play and start grading', action)
    return target


def _back(snapshot: Snapshot, action: Back, playlist: Playlist) -> Snapshot:
    if snapshot.phase == PHASE_GRADING:
        target = _exit_position(playlist, len(playlist) - 1)
        return target or snapshot

    idx = _block_index(playlist, snapshot, action)
    block = playlist[idx]
    if snapshot.phase == PHASE_AUTHOR_REVEAL:
        return replace(snapshot, phase=PHASE_AUTHOR_GUESS)
    if snapshot.phase == PHASE_AUTHOR_GUESS and block.question_ids:
        return Snapshot(STATUS_PLAY, PHASE_QUESTION, block.block_id, block.question_ids[-1])
    if snapshot.phase == PHASE_QUESTION and snapshot.current_question_id in block.question_ids:
        pos = block.question_ids.index(snapshot.current_question_id)
        if pos > 0:
            return replace(snapshot, current_question_id=block.question_ids[pos - 1])
    # First position of the block: previous block's exit, or stay put
    return _exit_position(playlist, idx - 1) or snapshot


def transition(snapshot: Snapshot, action: Action, playlist: Playlist) -> Snapshot:
    """Apply ``action`` to ``snapshot`` given the committed play order."""
    if isinstance(action, StartGame):
        if snapshot.status != STATUS_CREATION:
            _fail('content locked: quiz already started', action)
        if not any(b.question_ids for b in playlist):
            _fail('no questions', action)
        return _enter(playlist, 0)

    if isinstance(action, Restart):
        if snapshot.status != STATUS_FINISHED:
            _fail('quiz is not finished', action)
        return Snapshot(STATUS_CREATION)

    if snapshot.status != STATUS_PLAY:
        _fail('quiz is not in play', action)

    if isinstance(action, Advance):
        return _advance(snapshot, action, playlist)
    if isinstance(action, Reveal):
        if snapshot.phase != PHASE_AUTHOR_GUESS:
            _fail('reveal is only possible during author guessing', action)
        return replace(snapshot, phase=PHASE_AUTHOR_REVEAL)
    if isinstance(action, Back):
        return _back(snapshot, action, playlist)
    if isinstance(action, Finish):
        if snapshot.phase != PHASE_GRADING:
            _fail('quiz is not in grading', action)
        return Snapshot(STATUS_FINISHED)
    raise TypeError(f'unsupported action {action!r}')
