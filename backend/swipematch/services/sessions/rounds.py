"""Round progression: decks, the completion predicate and round resolution.

A round ends when every participant has swiped ``min(limit, deck size)``
cards. The countdown shown to clients is advisory; wall-clock time never ends
a round. Resolution is a pure function of the stored swipes persisted with
write-if-absent, so any poller that notices a finished round may resolve it.
"""

import json
import time
from typing import Dict, List, Optional

from flask import current_app

from swipematch.errors import InvalidTransition
from swipematch.models import (
    MatchSession, RoundResult, MODE_PAIR, MODE_GROUP, LOBBY, POOL_READY, SWIPING, RESULTS, NO_MATCH,
    WINNER, FINALIST_COMPUTATION, FINAL_VOTING, COMPLETED, CANCELLED,
)
from . import consensus, lifecycle, store


def round_limit(session: MatchSession) -> int:
    return session.round1_limit if session.round == 1 else session.round2_limit


def round_deck(session: MatchSession) -> List[str]:
    """Candidate ids swipeable in the current round, in display order."""
    if session.round == 1:
        return session.pool_ids
    return session.round2_deck_ids


def required_swipes(session: MatchSession) -> int:
    return min(round_limit(session), len(round_deck(session)))


def round_deadline(session: MatchSession) -> Optional[float]:
    if not session.round_started_at:
        return None
    cfg = current_app.config
    if session.mode == MODE_PAIR and session.round == 2:
        duration = int(cfg.get('ROUND2_DURATION_SEC', 60))
    else:
        duration = int(cfg.get('ROUND1_DURATION_SEC', 120))
    return session.round_started_at + duration


def round_complete(session: MatchSession, counts: Dict[str, int] = None) -> bool:
    if counts is None:
        counts = store.swipe_counts(session.id, session.round)
    required = required_swipes(session)
    participants = session.participants
    return bool(participants) and all(counts.get(p.participant_id, 0) >= required for p in participants)


def unseen_after_round_one(session: MatchSession) -> List[str]:
    """Pool candidates nobody swiped in round 1, in pool order."""
    seen = {s.candidate_id for s in store.swipes_for_round(session.id, 1)}
    return [cid for cid in session.pool_ids if cid not in seen]


def start_swiping(session: MatchSession, actor_id: str) -> MatchSession:
    """Host action: ``pool_ready -> swiping`` for round 1."""
    lifecycle.require_host(session, actor_id, 'start swiping')
    if session.status in (LOBBY, CANCELLED):
        raise InvalidTransition(f'Cannot start swiping while session is {session.status}')
    if session.status != POOL_READY:
        return session
    if lifecycle.transition(session, SWIPING, expected=POOL_READY, round_started_at=time.time()):
        _round_started(session)
    resolve_if_complete(session)
    return session


def start_next_round(session: MatchSession, actor_id: str) -> MatchSession:
    """``no_match -> swiping`` in round 2 over the cards nobody saw in round 1."""
    lifecycle.require_participant(session, actor_id)
    if session.round == 2 and session.status in (SWIPING, WINNER):
        return session
    if session.mode != MODE_PAIR or session.status != NO_MATCH:
        raise InvalidTransition(f'No further round is available while session is {session.status}')
    deck = unseen_after_round_one(session)
    changed = lifecycle.transition(
        session, SWIPING, expected=NO_MATCH,
        round=2, round2_deck=json.dumps(deck), round_started_at=time.time(),
    )
    if changed:
        current_app.logger.info(f"[next-round] session={session.id} round=2 deck={len(deck)}")
        _round_started(session)
    resolve_if_complete(session)
    return session


def end_round(session: MatchSession, actor_id: str) -> Optional[RoundResult]:
    """Resolve the current round if it is complete; idempotent."""
    lifecycle.require_participant(session, actor_id)
    existing = store.get_round_result(session.id, session.round)
    if session.status in (SWIPING, FINALIST_COMPUTATION):
        if existing is None and session.status == SWIPING and not round_complete(session):
            raise InvalidTransition('Round is not complete yet')
        return resolve_round(session)
    if existing is not None:
        return existing
    raise InvalidTransition(f'No round to end while session is {session.status}')


def resolve_if_complete(session: MatchSession) -> Optional[RoundResult]:
    if session.status == FINALIST_COMPUTATION:
        return resolve_round(session)
    if session.status != SWIPING or not round_complete(session):
        return None
    return resolve_round(session)


def resolve_round(session: MatchSession) -> RoundResult:
    """Compute (or reuse) the current round's result and apply it."""
    if session.mode == MODE_GROUP:
        return _resolve_group_round(session)
    result = store.get_round_result(session.id, session.round)
    if result is None:
        result = _write_pair_result(session)
    apply_round_result(session, result)
    return result


def _write_pair_result(session: MatchSession) -> RoundResult:
    fallback = None
    if session.round == 2:
        first = store.get_round_result(session.id, 1)
        fallback = (
            (first.compromise_candidate_id if first else None)
            or next(iter(round_deck(session)), None)
            or next(iter(session.pool_ids), None)
        )
    outcome = consensus.pair_round_result(
        session.round,
        [p.participant_id for p in session.participants],
        session.host_participant_id,
        store.swipes_for_round(session.id, session.round),
        round_deck(session),
        match_count=int(current_app.config.get('MATCH_COUNT', 3)),
        fallback_candidate_id=fallback,
    )
    result = store.write_round_result_if_absent(
        session.id, session.round, outcome.outcome,
        matches=outcome.matches,
        winner_candidate_id=outcome.winner_candidate_id,
        compromise_candidate_id=outcome.compromise_candidate_id,
    )
    current_app.logger.info(
        f"[round-result] session={session.id} round={session.round} outcome={result.outcome} "
        f"winner={result.winner_candidate_id} compromise={result.compromise_candidate_id}"
    )
    return result


def _resolve_group_round(session: MatchSession) -> RoundResult:
    if session.status == SWIPING:
        lifecycle.transition(session, FINALIST_COMPUTATION, expected=SWIPING)
    result = store.get_round_result(session.id, session.round)
    if result is None:
        finalists = consensus.group_finalists(
            store.swipes_for_round(session.id, session.round),
            round_deck(session),
            count=int(current_app.config.get('FINALIST_COUNT', 3)),
        )
        result = store.write_round_result_if_absent(
            session.id, session.round, consensus.OUTCOME_FINALISTS, matches=finalists,
        )
        current_app.logger.info(
            f"[round-result] session={session.id} outcome={result.outcome} finalists={result.match_ids}"
        )
    apply_round_result(session, result)
    return result


def _target_status(session: MatchSession, outcome: str) -> str:
    if outcome == consensus.OUTCOME_RESULTS:
        return RESULTS
    if outcome == consensus.OUTCOME_NO_MATCH:
        return NO_MATCH
    if outcome == consensus.OUTCOME_FINALISTS:
        return FINAL_VOTING
    return WINNER if session.mode == MODE_PAIR else COMPLETED


def apply_round_result(session: MatchSession, result: RoundResult) -> None:
    """Move the session to the status the stored result implies."""
    if result is None or result.round != session.round:
        return
    if session.status not in (SWIPING, FINALIST_COMPUTATION):
        return
    if result.outcome == consensus.OUTCOME_FINALISTS and session.status != FINALIST_COMPUTATION:
        return
    target = _target_status(session, result.outcome)
    fields = {}
    if result.winner_candidate_id and target != NO_MATCH:
        fields['winner_candidate_id'] = result.winner_candidate_id
    changed = lifecycle.transition(session, target, expected=session.status, **fields)
    if changed and target == FINAL_VOTING:
        from .finals import cast_synthetic_votes
        cast_synthetic_votes(session)


def _round_started(session: MatchSession) -> None:
    from .synthetic import play_round
    play_round(session)
