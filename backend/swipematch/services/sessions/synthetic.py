"""Demo partner for solo play.

A synthetic partner is an ordinary ``Participant`` flagged ``is_synthetic``.
It swipes through ``submit_swipe`` and votes through ``cast_final_vote`` like
anyone else, so nothing downstream needs to know it is not a person. Its
choices are seeded by session, participant and round, so replays repeat.
"""

import random

from flask import current_app

from swipematch.errors import InvalidTransition, SessionFull
from swipematch.models import MatchSession, LOBBY, SWIPING
from . import lifecycle, rounds, store, swipes


def add_demo_partner(session: MatchSession, actor_id: str, display_name=None):
    lifecycle.require_host(session, actor_id, 'add a demo partner')
    partner_id = f'synthetic-{session.id[:8]}'
    existing = store.find_participant(session, partner_id)
    if existing:
        return existing
    if session.status != LOBBY:
        raise InvalidTransition('Demo partners can only join from the lobby')
    if session.max_participants and len(session.participants) >= session.max_participants:
        raise SessionFull()
    participant, _ = store.append_participant(
        session, partner_id, display_name=display_name or 'Demo partner', is_synthetic=True
    )
    current_app.logger.info(f"[join] session={session.id} participant={partner_id} synthetic=1")
    return participant


def play_round(session: MatchSession) -> None:
    for participant in list(session.participants):
        if participant.is_synthetic and session.status == SWIPING:
            _play(session, participant.participant_id)


def _play(session: MatchSession, participant_id: str) -> None:
    ratio = float(current_app.config.get('SYNTHETIC_LIKE_RATIO', 0.35))
    rng = random.Random(f'{session.id}:{participant_id}:{session.round}')
    round_no = session.round
    deck = rounds.round_deck(session)[:rounds.required_swipes(session)]
    for candidate_id in deck:
        if session.status != SWIPING or session.round != round_no:
            return
        decision = 'like' if rng.random() < ratio else 'dislike'
        latency_ms = rng.uniform(600.0, 4000.0)
        swipes.submit_swipe(session, participant_id, candidate_id, decision, round_no, decided_at=latency_ms)
