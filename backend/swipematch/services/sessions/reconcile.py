"""Reconciliation contract between polling clients and the server.

``build_snapshot`` is the only thing a client needs to read: everything it
may show or decide is derived from it, and reading it twice gives the same
answer. ``next_client_action`` is the client half of the contract as a pure
function of a snapshot and the client's own unsent work, so timers and
rendering can live elsewhere.

Decision latencies never leave the server; a snapshot carries the caller's
own decisions and everyone's swipe counts only.
"""

from flask import current_app

from swipematch.models import (
    MatchSession, MODE_GROUP, LOBBY, POOL_READY, SWIPING, NO_MATCH, FINALIST_COMPUTATION,
    FINAL_VOTING, COMPLETED, CANCELLED, TERMINAL_STATUSES, Swipe,
)
from . import consensus, finals, lifecycle, rounds, store

# Client actions
WAIT = 'wait'
SWIPE = 'swipe'
SEND_SWIPES = 'send_swipes'
BUILD_POOL = 'build_pool'
START = 'start'
END_ROUND = 'end_round'
NEXT_ROUND = 'next_round'
COMPUTE_FINALISTS = 'compute_finalists'
FINAL_VOTE = 'final_vote'
FINALIZE = 'finalize'
SHOW_WINNER = 'show_winner'
STOP = 'stop'


def build_snapshot(session: MatchSession, viewer_id: str) -> dict:
    cfg = current_app.config
    participants = session.participants
    started = session.status not in (LOBBY, POOL_READY) and bool(session.pool)
    counts = store.swipe_counts(session.id, session.round) if started else {}
    required = rounds.required_swipes(session) if session.pool else 0

    my_swipes = {}
    if started:
        rows = Swipe.query.filter_by(session_id=session.id, participant_id=viewer_id, round=session.round).all()
        my_swipes = {s.candidate_id: s.decision for s in rows}
    superlikes_used = sum(1 for d in my_swipes.values() if d == 'superlike')

    results = store.round_results(session.id)
    current = next((r for r in results if r.round == session.round), None)
    compromise_id = next(
        (r.compromise_candidate_id for r in reversed(results) if r.compromise_candidate_id), None
    )

    swiping = session.status == SWIPING
    payload = {
        'session': session.to_dict(),
        'participants': [p.to_dict() for p in participants],
        'participant_count': len(participants),
        'is_host': viewer_id == session.host_participant_id,
        'pool': session.pool_items if session.status != LOBBY else None,
        'deck': rounds.round_deck(session) if started else None,
        'round_limit': rounds.round_limit(session),
        'required_swipes': required,
        'round_deadline': rounds.round_deadline(session) if swiping else None,
        'my_swipes': my_swipes,
        'my_swipe_count': len(my_swipes),
        'swipe_counts': {p.participant_id: counts.get(p.participant_id, 0) for p in participants},
        'superlikes_left': max(0, session.superlikes_per_round - superlikes_used),
        'my_done': started and len(my_swipes) >= required,
        'round_complete': swiping and rounds.round_complete(session, counts),
        'round_results': [r.to_dict() for r in results],
        'matches': [session.pool_item(cid) for cid in (current.match_ids if current else [])
                    if current.outcome != consensus.OUTCOME_FINALISTS],
        'compromise': session.pool_item(compromise_id),
        'winner': session.pool_item(session.winner_candidate_id),
        'poll_interval_sec': int(cfg.get('POLL_INTERVAL_SEC', 2)),
        'rematch_session_id': None,
    }

    if session.mode == MODE_GROUP:
        payload.update(_final_voting_view(session, viewer_id))
    if session.is_terminal:
        successor = lifecycle.rematch_of(session)
        payload['rematch_session_id'] = successor.id if successor else None
    return payload


def _final_voting_view(session: MatchSession, viewer_id: str) -> dict:
    finalist_ids = finals.finalists(session)
    votes = store.final_votes(session.id)
    view = {
        'finalists': [session.pool_item(cid) for cid in finalist_ids] if finalist_ids else None,
        'final_votes_cast': sorted(votes),
        'my_final_vote': votes.get(viewer_id),
        'final_votes': None,
        'final_vote_counts': None,
    }
    if session.status == COMPLETED:
        view['final_votes'] = votes
        view['final_vote_counts'] = consensus.tally_final_votes(finalist_ids, votes)[1]
    return view


def next_client_action(snapshot: dict, pending_swipes: int = 0) -> str:
    """What a polling client should do next, given the latest snapshot.

    ``pending_swipes`` counts decisions made locally but not yet acknowledged
    by the server; they are always flushed before anything else is asked of
    the server.
    """
    session = snapshot['session']
    status = session['status']
    if status == CANCELLED:
        return STOP
    if status in TERMINAL_STATUSES:
        return SHOW_WINNER
    if status == LOBBY:
        enough = snapshot['participant_count'] >= session['min_participants']
        return BUILD_POOL if snapshot['is_host'] and enough else WAIT
    if status == POOL_READY:
        return START if snapshot['is_host'] else WAIT
    if status == SWIPING:
        if pending_swipes:
            return SEND_SWIPES
        if snapshot['round_complete']:
            return COMPUTE_FINALISTS if session['mode'] == MODE_GROUP else END_ROUND
        return WAIT if snapshot['my_done'] else SWIPE
    if status == NO_MATCH:
        return NEXT_ROUND
    if status == FINALIST_COMPUTATION:
        return COMPUTE_FINALISTS
    if status == FINAL_VOTING:
        if not snapshot.get('my_final_vote'):
            return FINAL_VOTE
        if len(snapshot.get('final_votes_cast') or []) >= snapshot['participant_count']:
            return FINALIZE
        return WAIT
    return WAIT
