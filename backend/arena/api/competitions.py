from flask import Blueprint, jsonify, request, current_app
from flask_login import current_user, login_user, logout_user
from arena.errors import CompetitionNotFound, ContestError
from arena.models import Participant
from arena.services.contest.session_store import SessionStore
from arena.services.contest.sessions import SessionManager, canonical_identifier
from arena.services.contest.submission import MANUAL


competitions = Blueprint('competitions', __name__)

# Text fields a participant may send alongside (or instead of) file uploads
ANSWER_TEXT_FIELDS = ('prompt_file', 'output_file', 'content', 'notes')


def _coordinator():
    return current_app.extensions['submission_coordinator']


def _manager():
    coordinator = _coordinator()
    return SessionManager(coordinator.store, SessionStore(), clock=coordinator.now,
                          on_overdue=coordinator.handle_expiry)


def _current_participant(competition_id):
    """The logged-in participant for this competition, re-read from the database."""
    store = _coordinator().store
    if current_user.is_authenticated and isinstance(current_user, Participant) \
            and current_user.competition_id == competition_id:
        return store.find_session(current_user.lan_id, competition_id, refresh=True)
    token = SessionStore().load(competition_id)
    if token:
        return store.find_session(canonical_identifier(token['lan_id']), competition_id, refresh=True)
    return None


def _answer_from_request():
    if request.is_json:
        data = request.get_json(silent=True) or {}
        answer = {k: data.get(k) for k in ANSWER_TEXT_FIELDS if data.get(k) is not None}
        return answer, {}
    answer = {k: request.form.get(k) for k in ANSWER_TEXT_FIELDS if request.form.get(k)}
    files = {k: f for k, f in request.files.items() if f and f.filename}
    return answer, files


@competitions.errorhandler(ContestError)
def handle_contest_error(err):
    return jsonify(err.to_dict()), err.status_code


@competitions.route('', methods=['GET'])
def list_competitions():
    return jsonify([c.to_dict() for c in _coordinator().store.list_competitions()])


@competitions.route('/<int:competition_id>', methods=['GET'])
def get_competition(competition_id):
    competition = _coordinator().store.get_competition(competition_id)
    if competition is None:
        raise CompetitionNotFound()
    return jsonify(competition.to_dict())


@competitions.route('/<int:competition_id>/login', methods=['POST'])
def login(competition_id):
    data = request.get_json(silent=True) or {}
    ticket = _manager().establish_or_resume(data.get('lan_id'), competition_id)
    coordinator = _coordinator()
    coordinator.attach(current_app._get_current_object(), ticket.participant)
    login_user(ticket.participant, remember=True)
    payload = ticket.to_dict(coordinator.now())
    return jsonify(payload), (200 if ticket.resumed else 201)


@competitions.route('/<int:competition_id>/session', methods=['GET'])
def check_session(competition_id):
    """Reload path: resume straight into the workspace if the cookie and database agree."""
    ticket = _manager().check_existing(competition_id)
    if ticket is None:
        return jsonify({'active': False})
    coordinator = _coordinator()
    coordinator.attach(current_app._get_current_object(), ticket.participant)
    login_user(ticket.participant, remember=True)
    payload = ticket.to_dict(coordinator.now())
    payload['active'] = True
    payload['state'] = coordinator.state_of(ticket.participant)
    return jsonify(payload)


@competitions.route('/<int:competition_id>/draft', methods=['PUT'])
def save_draft(competition_id):
    participant = _current_participant(competition_id)
    if participant is None:
        return current_app.login_manager.unauthorized()
    answer, files = _answer_from_request()
    draft = _coordinator().save_draft(participant, answer, files)
    return jsonify({'draft': draft, 'remaining': _coordinator().remaining(participant)})


@competitions.route('/<int:competition_id>/submit', methods=['POST'])
def submit(competition_id):
    participant = _current_participant(competition_id)
    if participant is None:
        return current_app.login_manager.unauthorized()
    answer, files = _answer_from_request()
    result = _coordinator().submit(participant, answer, trigger=MANUAL, files=files)
    SessionStore().mirror(_coordinator().store.find_session(participant.lan_id, competition_id, refresh=True))
    status = 201 if result.accepted else 200
    return jsonify(result.to_dict()), status


@competitions.route('/<int:competition_id>/logout', methods=['POST'])
def logout(competition_id):
    participant = _current_participant(competition_id)
    if participant is not None:
        _coordinator().detach(participant)
    logout_user()
    # Timer keeps running; logging in again with the same LAN ID resumes
    return jsonify({'success': True})


@competitions.route('/<int:competition_id>/leaderboard', methods=['GET'])
def competition_leaderboard(competition_id):
    if _coordinator().store.get_competition(competition_id) is None:
        raise CompetitionNotFound()
    return jsonify(_coordinator().leaderboard.competition_board(competition_id))


@competitions.route('/leaderboard/overall', methods=['GET'])
def overall_leaderboard():
    return jsonify(_coordinator().leaderboard.overall_board())
