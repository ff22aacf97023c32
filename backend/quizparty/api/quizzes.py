from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required
from quizparty import db, socketio
from quizparty.errors import ForbiddenError, NotFoundError, PreconditionError, ValidationError
from quizparty.models import Block, Participant, Question, Quiz, STATUS_FINISHED
from quizparty.services.quiz import content, controller, identity, scoring
from quizparty.services.quiz.actions import parse_action, parse_grade_items
from quizparty.services.quiz.state import build_state


quizzes = Blueprint('quizzes', __name__)

TOKEN_HEADER = 'X-Player-Token'


def _notify(quiz: Quiz) -> None:
    socketio.emit(
        'state_update',
        {'code': quiz.code, 'version': quiz.version},
        to=f"quiz:{quiz.code}",
        namespace='/ws',
    )


def _body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def _int_field(data: dict, key: str) -> int:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"'{key}' is required and must be an integer")
    return value


def _is_host(quiz: Quiz) -> bool:
    return bool(current_user.is_authenticated and current_user.id == quiz.host_user_id)


def _require_host(quiz: Quiz, action: str) -> None:
    if not _is_host(quiz):
        raise ForbiddenError('Only the host may do this', entity='quiz', action=action)


def _caller(quiz: Quiz, action: str) -> Participant:
    participant = identity.find_by_token(quiz, request.headers.get(TOKEN_HEADER))
    if participant is None:
        raise ForbiddenError('Join the quiz first', entity='participant', action=action)
    return participant


def _participant(quiz: Quiz, participant_id: int, entity: str = 'participant') -> Participant:
    participant = db.session.get(Participant, participant_id)
    if participant is None or participant.quiz_id != quiz.id:
        raise NotFoundError('Participant not found', entity=entity)
    return participant


@quizzes.route('', methods=['POST'])
@login_required
def create_quiz():
    quiz = controller.create_quiz(current_user, _body())
    return jsonify(quiz.to_dict()), 201


@quizzes.route('/host', methods=['GET'])
@login_required
def list_my_quizzes():
    return jsonify({'quizzes': [q.to_dict() for q in controller.list_host_quizzes(current_user.id)]})


@quizzes.route('/join', methods=['POST'])
def join_quiz():
    data = _body()
    quiz = controller.get_quiz_by_code(data.get('code'))
    participant, rejoined = identity.resolve_or_create_participant(
        quiz, data.get('device_token'), data.get('display_name'),
    )
    if not rejoined:
        _notify(quiz)
    return jsonify({
        'quiz': quiz.to_dict(),
        'participant': participant.to_dict(include_token=True),
        'rejoined': rejoined,
    }), (200 if rejoined else 201)


@quizzes.route('/<string:code>/state', methods=['GET'])
def get_quiz_state(code):
    quiz = controller.get_quiz_by_code(code)
    return jsonify(build_state(quiz, request.headers.get(TOKEN_HEADER), is_host=_is_host(quiz)))


@quizzes.route('/<string:code>/blocks', methods=['POST'])
def save_block(code):
    data = _body()
    quiz = controller.get_quiz_by_code(code)
    if data.get('author_type') == 'host':
        _require_host(quiz, 'save_block')
        author = None
        block_id = data.get('block_id')
        if block_id is not None and (isinstance(block_id, bool) or not isinstance(block_id, int)):
            raise ValidationError("'block_id' must be an integer", entity='block')
    else:
        author = _caller(quiz, 'save_block')
        block_id = None
    block = content.save_block(quiz, author, data.get('title'), data.get('questions', []), block_id=block_id)
    _notify(quiz)
    return jsonify({
        'block': block.to_dict(),
        'questions': [q.to_dict() for q in block.questions],
    }), 201


@quizzes.route('/<string:code>/actions', methods=['POST'])
def perform_action(code):
    data = _body()
    quiz = controller.get_quiz_by_code(code)
    action = parse_action(data.get('action'), data.get('payload'))
    _require_host(quiz, action.name.value)
    quiz = controller.perform_action(quiz.id, action)
    _notify(quiz)
    return jsonify(quiz.to_dict())


@quizzes.route('/<string:code>/answers', methods=['POST'])
def submit_answer(code):
    data = _body()
    quiz = controller.get_quiz_by_code(code)
    participant = _caller(quiz, 'answer')
    question = db.session.get(Question, _int_field(data, 'question_id'))
    if question is None:
        raise NotFoundError('Question not found', entity='question')
    answer = scoring.record_answer(quiz, question, participant, data.get('answer_text'))
    _notify(quiz)
    return jsonify(answer.to_dict())


@quizzes.route('/<string:code>/guesses', methods=['POST'])
def submit_guess(code):
    data = _body()
    quiz = controller.get_quiz_by_code(code)
    guesser = _caller(quiz, 'guess')
    block = db.session.get(Block, _int_field(data, 'block_id'))
    guessed = _participant(quiz, _int_field(data, 'guessed_participant_id'), entity='guessed_participant')
    guess = scoring.record_guess(quiz, block, guesser, guessed)
    _notify(quiz)
    return jsonify(guess.to_dict())


@quizzes.route('/<string:code>/grades', methods=['POST'])
def grade_answer(code):
    data = _body()
    quiz = controller.get_quiz_by_code(code)
    _require_host(quiz, 'grade')
    question = db.session.get(Question, _int_field(data, 'question_id'))
    participant = _participant(quiz, _int_field(data, 'participant_id'))
    if not isinstance(data.get('is_correct'), bool):
        raise ValidationError("'is_correct' must be a boolean", entity='answer')
    answer = scoring.grade_answer(quiz, question, participant, data['is_correct'])
    _notify(quiz)
    return jsonify(answer.to_dict())


@quizzes.route('/<string:code>/grading', methods=['GET'])
def list_ungraded(code):
    quiz = controller.get_quiz_by_code(code)
    _require_host(quiz, 'grade')
    return jsonify({'questions': scoring.list_ungraded_open_answers(quiz)})


@quizzes.route('/<string:code>/grading', methods=['POST'])
def submit_grading(code):
    data = _body()
    quiz = controller.get_quiz_by_code(code)
    _require_host(quiz, 'grade')
    graded = scoring.submit_grading_batch(quiz, parse_grade_items(data.get('grades')))
    _notify(quiz)
    return jsonify({'graded': graded})


@quizzes.route('/<string:code>/scores', methods=['GET'])
def get_scores(code):
    quiz = controller.get_quiz_by_code(code)
    if not _is_host(quiz) and quiz.status != STATUS_FINISHED:
        raise PreconditionError('scores are shown when the quiz is finished', entity='quiz', action='scores')
    stats = scoring.block_accuracy(quiz)
    hardest, easiest = scoring.hardest_and_easiest(stats)
    return jsonify({
        'scores': [s.to_dict() for s in scoring.compute_scores(quiz)],
        'block_stats': [s.to_dict() for s in stats],
        'hardest_block': hardest.to_dict() if hardest else None,
        'easiest_block': easiest.to_dict() if easiest else None,
    })


@quizzes.route('/<string:code>/participants/<int:participant_id>', methods=['PATCH'])
def rename_participant(code, participant_id):
    data = _body()
    quiz = controller.get_quiz_by_code(code)
    caller = _caller(quiz, 'rename')
    if caller.id != participant_id:
        raise ForbiddenError('You can only rename yourself', entity='participant', action='rename')
    participant = identity.rename_participant(caller, data.get('display_name'))
    _notify(quiz)
    return jsonify(participant.to_dict())
