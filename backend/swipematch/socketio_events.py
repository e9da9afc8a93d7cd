from flask_socketio import join_room, leave_room, emit
from swipematch import socketio


def _room(join_code: str) -> str:
    return f"session:{join_code.upper()}"


def emit_state_update(join_code: str) -> None:
    """Hint clients in the session room to refetch their snapshot.

    The payload only names the session; snapshots stay the source of truth,
    so a missed hint just means the next poll catches up.
    """
    if not join_code:
        return
    socketio.emit('state_update', {'join_code': join_code}, to=_room(join_code), namespace='/ws')


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_join_session(data):
    join_code = (data or {}).get('join_code')
    if not join_code:
        emit('error', {'message': 'join_code is required'})
        return
    room = _room(join_code)
    join_room(room)
    emit('joined', {'room': room})


def handle_leave_session(data):
    join_code = (data or {}).get('join_code')
    if not join_code:
        emit('error', {'message': 'join_code is required'})
        return
    room = _room(join_code)
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
    socketio.on_event('join_session', handle_join_session, namespace='/ws')
    socketio.on_event('leave_session', handle_leave_session, namespace='/ws')
    socketio.on_event('ping', handle_ping, namespace='/ws')

    if testing:
        # Test-only mirror on default namespace
        socketio.on_event('connect', handle_connect, namespace='/')
        socketio.on_event('join_session', handle_join_session, namespace='/')
        socketio.on_event('leave_session', handle_leave_session, namespace='/')
        socketio.on_event('ping', handle_ping, namespace='/')
