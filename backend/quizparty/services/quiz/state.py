"""Role-filtered quiz state for hosts, participants and not-yet-joined callers."""

from typing import Dict, Optional

from quizparty.models import (
    Answer, BlockGuess, Participant, Quiz,
    PHASE_AUTHOR_REVEAL, PHASE_GRADING, STATUS_CREATION, STATUS_FINISHED,
)
from .content import ordered_blocks, questions_by_block
from .identity import find_by_token
from .scoring import block_accuracy, compute_scores, hardest_and_easiest

ROLE_HOST = 'host'
ROLE_PARTICIPANT = 'participant'
ROLE_GUEST = 'guest'


def _viewer(quiz: Quiz, me: Optional[Participant], is_host: bool) -> Dict:
    if is_host:
        return {'role': ROLE_HOST, 'participant_id': None, 'needs_join': False}
    if me is None:
        # Deep links without a valid token go through the join flow
        return {'role': ROLE_GUEST, 'participant_id': None, 'needs_join': True}
    return {'role': ROLE_PARTICIPANT, 'participant_id': me.id, 'needs_join': False}


def build_state(quiz: Quiz, caller_token: Optional[str] = None, is_host: bool = False) -> Dict:
    me = None if is_host else find_by_token(quiz, caller_token)
    blocks = ordered_blocks(quiz)
    grouped = questions_by_block(quiz)
    participants = Participant.query.filter_by(quiz_id=quiz.id).order_by(Participant.id).all()
    answers = Answer.query.filter_by(quiz_id=quiz.id).order_by(Answer.id).all()
    guesses = BlockGuess.query.filter_by(quiz_id=quiz.id).order_by(BlockGuess.id).all()

    current_block = next((b for b in blocks if b.id == quiz.current_block_id), None)
    current_order = current_block.order_index if current_block is not None else None
    finished = quiz.status == STATUS_FINISHED
    my_id = me.id if me else None

    def is_own(block):
        return my_id is not None and block.author_participant_id == my_id

    def block_passed(block):
        if finished or quiz.phase == PHASE_GRADING:
            return True
        return current_order is not None and block.order_index is not None and block.order_index < current_order

    def author_visible(block):
        if is_host or is_own(block) or block_passed(block):
            return True
        return block is current_block and quiz.phase == PHASE_AUTHOR_REVEAL

    payload_blocks = []
    payload_questions = {}
    if quiz.status == STATUS_CREATION:
        for block in blocks:
            if is_host or is_own(block):
                payload_blocks.append(block.to_dict())
                payload_questions[block.id] = [q.to_dict() for q in grouped.get(block.id, [])]
    else:
        for block in blocks:
            payload_blocks.append(block.to_dict(reveal_author=author_visible(block)))
            qs = grouped.get(block.id, [])
            if is_host or is_own(block) or block_passed(block):
                payload_questions[block.id] = [q.to_dict() for q in qs]
            elif block is current_block:
                # Only questions asked so far, without solutions
                shown = []
                for q in qs:
                    shown.append(q.to_dict(include_solution=False))
                    if q.id == quiz.current_question_id:
                        break
                payload_questions[block.id] = shown

    if is_host or finished:
        visible_answers = answers
        visible_guesses = guesses
    else:
        visible_answers = [a for a in answers if a.participant_id == my_id]
        revealed = {b.id for b in blocks if author_visible(b)}
        visible_guesses = [g for g in guesses if g.guesser_id == my_id or g.block_id in revealed]

    current_question = None
    if current_block is not None and quiz.current_question_id is not None:
        q = next((q for q in grouped.get(current_block.id, []) if q.id == quiz.current_question_id), None)
        if q is not None:
            current_question = q.to_dict(include_solution=is_host or is_own(current_block))

    state = {
        'quiz': quiz.to_dict(),
        'viewer': _viewer(quiz, me, is_host),
        'participants': [p.to_dict(include_token=p.id == my_id) for p in participants],
        'blocks': payload_blocks,
        'questions': {str(k): v for k, v in payload_questions.items()},
        'answers': [a.to_dict() for a in visible_answers],
        'guesses': [g.to_dict() for g in visible_guesses],
        'current_block': (
            current_block.to_dict(reveal_author=author_visible(current_block))
            if current_block is not None and quiz.status != STATUS_CREATION else None
        ),
        'current_question': current_question,
    }
    if finished:
        stats = block_accuracy(quiz)
        hardest, easiest = hardest_and_easiest(stats)
        state['scores'] = [s.to_dict() for s in compute_scores(quiz)]
        state['block_stats'] = [s.to_dict() for s in stats]
        state['hardest_block'] = hardest.to_dict() if hardest else None
        state['easiest_block'] = easiest.to_dict() if easiest else None
    return state
