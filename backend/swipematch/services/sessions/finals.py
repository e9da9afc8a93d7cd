"""Group mode endgame: finalists, one final vote per participant, finalize."""

from flask import current_app

from swipematch.errors import AlreadyVoted, InvalidTransition, UnknownCandidate
from swipematch.models import (
    MatchSession, LIKED_DECISIONS, MODE_GROUP, SWIPING, FINALIST_COMPUTATION, FINAL_VOTING, COMPLETED,
)
from swipematch.socketio_events import emit_state_update
from . import consensus, lifecycle, rounds, store


def finalists(session: MatchSession):
    result = store.get_round_result(session.id, 1)
    if result is None or result.outcome != consensus.OUTCOME_FINALISTS:
        return []
    return result.match_ids


def compute_finalists(session: MatchSession, actor_id: str):
    """``swiping -> finalist_computation -> final_voting``; safe to repeat."""
    lifecycle.require_participant(session, actor_id)
    if session.mode != MODE_GROUP:
        raise InvalidTransition('Finalists only exist in group sessions')
    if session.status in (FINAL_VOTING, COMPLETED):
        return store.get_round_result(session.id, 1)
    if session.status not in (SWIPING, FINALIST_COMPUTATION):
        raise InvalidTransition(f'Cannot compute finalists while session is {session.status}')
    return rounds.end_round(session, actor_id)


def cast_final_vote(session: MatchSession, participant_id: str, candidate_id):
    lifecycle.require_participant(session, participant_id)
    if session.status != FINAL_VOTING:
        raise InvalidTransition(f'Session is not in final voting (status {session.status})')
    candidate_id = str(candidate_id)
    if candidate_id not in finalists(session):
        raise UnknownCandidate('Not a finalist')
    vote, created = store.cast_final_vote_if_absent(session.id, participant_id, candidate_id)
    if not created and vote.candidate_id != candidate_id:
        raise AlreadyVoted()
    if created:
        current_app.logger.info(
            f"[final-vote] session={session.id} participant={participant_id} candidate={candidate_id}"
        )
        emit_state_update(session.join_code)
    return vote


def finalize(session: MatchSession, actor_id: str):
    """Pick the winner once everyone voted. Returns ``(winner, vote_counts)``."""
    lifecycle.require_participant(session, actor_id)
    finalist_ids = finalists(session)
    votes = store.final_votes(session.id)
    if session.status == COMPLETED:
        return session.winner_candidate_id, consensus.tally_final_votes(finalist_ids, votes)[1]
    if session.status != FINAL_VOTING:
        raise InvalidTransition(f'Cannot finalize while session is {session.status}')
    missing = [p.participant_id for p in session.participants if p.participant_id not in votes]
    if missing:
        raise InvalidTransition(f'Waiting for {len(missing)} final vote(s)')
    winner, counts = consensus.tally_final_votes(finalist_ids, votes)
    if lifecycle.transition(session, COMPLETED, expected=FINAL_VOTING, winner_candidate_id=winner):
        current_app.logger.info(f"[finalize] session={session.id} winner={winner} votes={counts}")
    return session.winner_candidate_id, counts


def cast_synthetic_votes(session: MatchSession) -> None:
    """Demo partners vote for the first finalist they liked, else the top finalist."""
    finalist_ids = finalists(session)
    if not finalist_ids:
        return
    for participant in session.participants:
        if not participant.is_synthetic:
            continue
        liked = {
            s.candidate_id for s in store.swipes_for_round(session.id, 1)
            if s.participant_id == participant.participant_id and s.decision in LIKED_DECISIONS
        }
        pick = next((cid for cid in finalist_ids if cid in liked), finalist_ids[0])
        cast_final_vote(session, participant.participant_id, pick)
