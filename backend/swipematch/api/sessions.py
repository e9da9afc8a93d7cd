from flask import Blueprint, jsonify, request, current_app
from swipematch.services.sessions import finals, lifecycle, rounds, store, swipes, synthetic
from swipematch.services.sessions.reconcile import build_snapshot


sessions = Blueprint('sessions', __name__)


def _body() -> dict:
    return request.get_json(silent=True) or {}


def _participant_id(data=None):
    data = data if data is not None else _body()
    return (
        data.get('participant_id')
        or request.args.get('participant_id')
        or request.headers.get('X-Participant-ID')
    )


def _required(message):
    return jsonify({'error': message, 'code': 'invalid_request'}), 400


def _snapshot(session, participant_id, status=200):
    return jsonify(build_snapshot(session, participant_id)), status


def _session_and_actor(data):
    """Load the session named in ``data`` and the acting participant id.

    Returns ``(session, participant_id, error_response)``.
    """
    session_id = data.get('session_id')
    participant_id = _participant_id(data)
    if not session_id:
        return None, None, _required('session_id is required')
    if not participant_id:
        return None, None, _required('participant_id is required')
    session = lifecycle.load(session_id)
    participant = store.find_participant(session, participant_id)
    if participant:
        store.mark_seen(participant)
    return session, participant_id, None


@sessions.route('/session', methods=['POST'])
def create_session():
    data = _body()
    participant_id = _participant_id(data)
    if not participant_id:
        return _required('participant_id is required')
    preferences = dict(data.get('preferences') or {})
    if data.get('candidates') is not None:
        preferences['candidates'] = data.get('candidates')
    session = lifecycle.create_session(
        participant_id,
        display_name=data.get('display_name'),
        mode=data.get('mode') or 'pair',
        min_participants=data.get('min_participants'),
        round1_limit=data.get('round1_limit'),
        round2_limit=data.get('round2_limit'),
        preferences=preferences,
    )
    return jsonify({
        'session_id': session.id,
        'join_code': session.join_code,
        'session': build_snapshot(session, participant_id),
    }), 201


@sessions.route('/session/join', methods=['POST'])
def join_session():
    data = _body()
    join_code = data.get('join_code')
    participant_id = _participant_id(data)
    if not all([join_code, participant_id]):
        return _required('Join code and participant_id are required')
    session, _, created = lifecycle.join_session(join_code, participant_id, data.get('display_name'))
    return _snapshot(session, participant_id, 201 if created else 200)


@sessions.route('/session/<string:session_id>', methods=['GET'])
def get_session(session_id):
    participant_id = _participant_id({})
    if not participant_id:
        return _required('participant_id is required')
    session = lifecycle.load(session_id)
    participant = lifecycle.require_participant(session, participant_id)
    store.mark_seen(participant)
    # Any poller may settle a round whose last swipe was already stored
    rounds.resolve_if_complete(session)
    return _snapshot(session, participant_id)


@sessions.route('/session/pool', methods=['POST'])
def build_pool():
    data = _body()
    session, participant_id, error = _session_and_actor(data)
    if error:
        return error
    overrides = dict(data.get('preferences') or {})
    if data.get('candidates') is not None:
        overrides['candidates'] = data.get('candidates')
    lifecycle.build_pool(session, participant_id, overrides)
    return _snapshot(session, participant_id)


@sessions.route('/session/start', methods=['POST'])
def start_swiping():
    data = _body()
    session, participant_id, error = _session_and_actor(data)
    if error:
        return error
    rounds.start_swiping(session, participant_id)
    return _snapshot(session, participant_id)


@sessions.route('/session/swipe', methods=['POST'])
def submit_swipe():
    data = _body()
    session, participant_id, error = _session_and_actor(data)
    if error:
        return error
    candidate_id = data.get('candidate_id')
    decision = data.get('decision')
    if candidate_id is None or candidate_id == '' or not decision:
        return _required('candidate_id and decision are required')
    try:
        round_no = int(data['round']) if data.get('round') is not None else session.round
        decided_at = float(data['decided_at']) if data.get('decided_at') is not None else None
    except (TypeError, ValueError):
        return _required('round and decided_at must be numbers')
    swipe, _ = swipes.submit_swipe(session, participant_id, candidate_id, decision, round_no, decided_at)
    payload = build_snapshot(session, participant_id)
    payload['swipe'] = swipe.to_dict()
    return jsonify(payload), 200


@sessions.route('/session/end-round', methods=['POST'])
def end_round():
    data = _body()
    session, participant_id, error = _session_and_actor(data)
    if error:
        return error
    rounds.end_round(session, participant_id)
    return _snapshot(session, participant_id)


@sessions.route('/session/next-round', methods=['POST'])
def next_round():
    data = _body()
    session, participant_id, error = _session_and_actor(data)
    if error:
        return error
    rounds.start_next_round(session, participant_id)
    return _snapshot(session, participant_id)


@sessions.route('/session/compute-finalists', methods=['POST'])
def compute_finalists():
    data = _body()
    session, participant_id, error = _session_and_actor(data)
    if error:
        return error
    finals.compute_finalists(session, participant_id)
    return _snapshot(session, participant_id)


@sessions.route('/session/final-vote', methods=['POST'])
def final_vote():
    data = _body()
    session, participant_id, error = _session_and_actor(data)
    if error:
        return error
    candidate_id = data.get('candidate_id')
    if candidate_id is None or candidate_id == '':
        return _required('candidate_id is required')
    finals.cast_final_vote(session, participant_id, candidate_id)
    return _snapshot(session, participant_id)


@sessions.route('/session/finalize', methods=['POST'])
def finalize():
    data = _body()
    session, participant_id, error = _session_and_actor(data)
    if error:
        return error
    finals.finalize(session, participant_id)
    return _snapshot(session, participant_id)


@sessions.route('/session/cancel', methods=['POST'])
def cancel_session():
    data = _body()
    session, participant_id, error = _session_and_actor(data)
    if error:
        return error
    lifecycle.cancel_session(session, participant_id)
    return _snapshot(session, participant_id)


@sessions.route('/session/demo-partner', methods=['POST'])
def add_demo_partner():
    data = _body()
    session, participant_id, error = _session_and_actor(data)
    if error:
        return error
    synthetic.add_demo_partner(session, participant_id, data.get('display_name'))
    return _snapshot(session, participant_id, 201)


@sessions.route('/session/rematch', methods=['POST'])
def rematch():
    data = _body()
    session, participant_id, error = _session_and_actor(data)
    if error:
        return error
    fresh = lifecycle.rematch(session, participant_id)
    current_app.logger.info(f"[rematch] session={session.id} -> {fresh.id}")
    return jsonify({
        'session_id': fresh.id,
        'join_code': fresh.join_code,
        'session': build_snapshot(fresh, participant_id),
    }), 201
