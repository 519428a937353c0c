from flask_socketio import join_room, leave_room, emit
from flask import current_app
from arena import socketio
from arena.services.contest.sessions import canonical_identifier
from arena.services.contest.submission import session_room


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_disconnect(reason=None):
    # Countdowns live on the server; a dropped socket only stops the updates
    pass


def _session_key(data):
    data = data or {}
    lan_id = canonical_identifier(data.get('lan_id'))
    try:
        competition_id = int(data.get('competition_id'))
    except (TypeError, ValueError):
        competition_id = None
    return lan_id, competition_id


def handle_join_session(data):
    lan_id, competition_id = _session_key(data)
    if not lan_id or competition_id is None:
        emit('error', {'message': 'lan_id and competition_id are required'})
        return
    coordinator = current_app.extensions['submission_coordinator']
    participant = coordinator.store.find_session(lan_id, competition_id, refresh=True)
    if participant is None:
        emit('error', {'message': 'No session for this LAN ID'})
        return
    room = session_room(competition_id, lan_id)
    join_room(room)
    emit('joined', {
        'room': room,
        'remaining': coordinator.remaining(participant),
        'state': coordinator.state_of(participant),
        'submitted': participant.submitted,
    })


def handle_leave_session(data):
    lan_id, competition_id = _session_key(data)
    if not lan_id or competition_id is None:
        emit('error', {'message': 'lan_id and competition_id are required'})
        return
    room = session_room(competition_id, lan_id)
    leave_room(room)
    emit('left', {'room': room})


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    handlers = {
        'connect': handle_connect,
        'disconnect': handle_disconnect,
        'join_session': handle_join_session,
        'leave_session': handle_leave_session,
        'ping': handle_ping,
    }
    for event, handler in handlers.items():
        socketio.on_event(event, handler, namespace='/ws')

    if testing:
        # Test-only mirror on default namespace
        for event, handler in handlers.items():
            socketio.on_event(event, handler, namespace='/')
