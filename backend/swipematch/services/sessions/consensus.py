"""Consensus computations over stored swipes.

All functions here are pure: given the same swipes they return the same
answer no matter how often, or by how many pollers, they are evaluated.
Ties are always broken by deck position and then by candidate id, so the
order in which rows were read never leaks into a result.

Swipes are any objects exposing ``participant_id``, ``candidate_id``,
``decision`` and ``decided_at``.
"""

from collections import defaultdict
from typing import Dict, Iterable, List, NamedTuple, Optional

from swipematch.models import LIKED_DECISIONS

OUTCOME_RESULTS = 'results'
OUTCOME_NO_MATCH = 'no_match'
OUTCOME_WINNER = 'winner'
OUTCOME_SUPERLIKE = 'superlike'
OUTCOME_FINALISTS = 'finalists'


class RoundOutcome(NamedTuple):
    outcome: str
    matches: List[str]
    winner_candidate_id: Optional[str]
    compromise_candidate_id: Optional[str]


def _positions(deck: Iterable[str]) -> Dict[str, int]:
    return {cid: idx for idx, cid in enumerate(deck)}


def _tie_key(cid: str, positions: Dict[str, int]):
    return (positions.get(cid, len(positions)), cid)


def liked_by(swipes) -> Dict[str, Dict[str, float]]:
    """Map participant id -> {candidate id: decided_at} for like/superlike."""
    liked: Dict[str, Dict[str, float]] = defaultdict(dict)
    for s in swipes:
        if s.decision in LIKED_DECISIONS:
            liked[s.participant_id][s.candidate_id] = s.decided_at
    return liked


def rank_mutual(participant_ids: List[str], swipes, deck: List[str]) -> List[str]:
    """Candidates liked by every participant, fastest consensus first.

    Ranked by the smallest ``decided_at`` among the participants who liked it.
    """
    if not participant_ids:
        return []
    liked = liked_by(swipes)
    mutual = set(liked.get(participant_ids[0], {}))
    for pid in participant_ids[1:]:
        mutual &= set(liked.get(pid, {}))
    positions = _positions(deck)

    def key(cid):
        fastest = min(liked[pid][cid] for pid in participant_ids)
        return (fastest,) + _tie_key(cid, positions)

    return sorted(mutual, key=key)


def compromise_pick(host_id: str, swipes, deck: List[str]) -> Optional[str]:
    """The host's earliest like, else the earliest like of anyone else."""
    liked = liked_by(swipes)
    positions = _positions(deck)
    own = liked.get(host_id, {})
    if own:
        pool = own.items()
    else:
        pool = [(cid, at) for pid, picks in liked.items() if pid != host_id for cid, at in picks.items()]
    ranked = sorted(pool, key=lambda item: (item[1],) + _tie_key(item[0], positions))
    return ranked[0][0] if ranked else None


def pair_round_result(round_no: int, participant_ids: List[str], host_id: str, swipes,
                      deck: List[str], match_count: int = 3,
                      fallback_candidate_id: Optional[str] = None) -> RoundOutcome:
    """Resolve a swiping round for pair mode.

    Round 1 either finds mutual likes (``results``) or reports ``no_match``
    with a compromise pick. Round 2 always produces a winner: the best mutual
    like, else the compromise over round-2 decisions, else
    ``fallback_candidate_id``, else the first card of the deck.
    """
    mutual = rank_mutual(participant_ids, swipes, deck)
    matches = mutual[:match_count]
    if round_no == 1:
        if matches:
            return RoundOutcome(OUTCOME_RESULTS, matches, matches[0], None)
        return RoundOutcome(OUTCOME_NO_MATCH, [], None, compromise_pick(host_id, swipes, deck))

    if matches:
        return RoundOutcome(OUTCOME_WINNER, matches, matches[0], None)
    compromise = compromise_pick(host_id, swipes, deck)
    winner = compromise or fallback_candidate_id or (deck[0] if deck else None)
    return RoundOutcome(OUTCOME_WINNER, [], winner, compromise)


def group_finalists(swipes, deck: List[str], count: int = 3) -> List[str]:
    """Top candidates by like count, then by summed decision latency.

    When fewer than ``count`` candidates were liked by anyone, the remainder is
    filled from candidates ranked the same way by ``neutral`` decisions. If
    nobody liked or shrugged at anything, the top of the deck stands in.
    """
    positions = _positions(deck)

    def ranked(decisions, exclude=()):
        counts: Dict[str, int] = defaultdict(int)
        latency: Dict[str, float] = defaultdict(float)
        for s in swipes:
            if s.decision in decisions and s.candidate_id not in exclude:
                counts[s.candidate_id] += 1
                latency[s.candidate_id] += s.decided_at
        return sorted(counts, key=lambda cid: (-counts[cid], latency[cid]) + _tie_key(cid, positions))

    finalists = ranked(LIKED_DECISIONS)[:count]
    if len(finalists) < count:
        finalists += ranked({'neutral'}, exclude=set(finalists))[:count - len(finalists)]
    if not finalists:
        finalists = list(deck[:count])
    return finalists


def tally_final_votes(finalists: List[str], votes: Dict[str, str]):
    """Return ``(winner, counts)`` for a plurality vote among ``finalists``.

    Equal vote counts go to the finalist ranked higher in ``finalists``.
    """
    counts = {cid: 0 for cid in finalists}
    for cid in votes.values():
        if cid in counts:
            counts[cid] += 1
    if not finalists:
        return None, counts
    order = {cid: idx for idx, cid in enumerate(finalists)}
    winner = min(finalists, key=lambda cid: (-counts[cid], order[cid]))
    return winner, counts


def double_superlike(swipes, participant_id: str, candidate_id: str) -> bool:
    """True if someone other than ``participant_id`` superliked ``candidate_id``."""
    return any(
        s.candidate_id == candidate_id and s.participant_id != participant_id and s.decision == 'superlike'
        for s in swipes
    )
