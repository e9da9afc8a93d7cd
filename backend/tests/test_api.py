import time

from swipematch import db
from swipematch.models import MatchSession, Participant


def test_index_and_health(client):
    assert client.get('/').status_code == 200
    res = client.get('/health')
    assert res.status_code == 200
    assert res.get_json()['status'] == 'ok'


def test_create_session(api):
    res = api.create('P1', display_name='Host', candidates=[1, 2, 3])
    assert res.status_code == 201
    data = res.get_json()
    assert len(data['join_code']) == 6
    assert data['session']['session']['status'] == 'lobby'
    assert data['session']['is_host'] is True
    assert data['session']['participants'][0]['id'] == 'P1'


def test_create_requires_participant_id(client):
    res = client.post('/api/session', json={'mode': 'pair'})
    assert res.status_code == 400
    assert res.get_json()['code'] == 'invalid_request'


def test_create_rejects_round2_limit_not_smaller(api):
    res = api.create('P1', round1_limit=5, round2_limit=5)
    assert res.status_code == 400


def test_participant_id_from_header(api, client):
    created = api.create('P1', candidates=[1, 2]).get_json()
    res = client.get(f"/api/session/{created['session_id']}", headers={'X-Participant-ID': 'P1'})
    assert res.status_code == 200
    assert res.get_json()['is_host'] is True


def test_unknown_session_is_404(api):
    res = api.snapshot('does-not-exist', 'P1')
    assert res.status_code == 404
    assert res.get_json()['code'] == 'session_not_found'


def test_duplicate_join_returns_existing_participant(api):
    created = api.create('P1', candidates=[1, 2, 3]).get_json()
    first = api.join(created['join_code'], 'P2', 'Guest')
    assert first.status_code == 201
    again = api.join(created['join_code'], 'P2', 'Guest')
    assert again.status_code == 200
    participants = again.get_json()['participants']
    assert [p['id'] for p in participants] == ['P1', 'P2']
    assert Participant.query.filter_by(session_id=created['session_id']).count() == 2


def test_join_code_is_case_insensitive(api):
    created = api.create('P1', candidates=[1, 2]).get_json()
    res = api.join(created['join_code'].lower(), 'P2')
    assert res.status_code == 201


def test_pair_session_is_full_after_two(api):
    created = api.create('P1', candidates=[1, 2]).get_json()
    api.join(created['join_code'], 'P2')
    res = api.join(created['join_code'], 'P3')
    assert res.status_code == 409
    assert res.get_json()['code'] == 'session_full'


def test_join_after_start_is_rejected(api, pair_session):
    session_id = pair_session()
    code = MatchSession.query.get(session_id).join_code
    res = api.join(code, 'P3')
    assert res.status_code == 409


def test_pool_requires_enough_participants(api):
    created = api.create('P1', candidates=[1, 2, 3]).get_json()
    res = api.post('pool', created['session_id'], 'P1')
    assert res.status_code == 400
    assert res.get_json()['code'] == 'not_enough_participants'


def test_host_only_actions(api):
    created = api.create('P1', candidates=[1, 2, 3]).get_json()
    session_id = created['session_id']
    api.join(created['join_code'], 'P2')
    res = api.post('pool', session_id, 'P2')
    assert res.status_code == 403
    assert res.get_json()['code'] == 'unauthorized'
    assert api.post('pool', session_id, 'P1').status_code == 200
    assert api.post('start', session_id, 'P2').status_code == 403
    assert api.post('cancel', session_id, 'P2').status_code == 403


def test_strangers_cannot_read_or_swipe(api, pair_session):
    session_id = pair_session()
    assert api.snapshot(session_id, 'intruder').status_code == 403
    assert api.swipe(session_id, 'intruder', 1, 'like').status_code == 403


def test_start_and_pool_are_idempotent(api, pair_session):
    session_id = pair_session()
    assert api.post('pool', session_id, 'P1').status_code == 200
    res = api.post('start', session_id, 'P1')
    assert res.status_code == 200
    assert res.get_json()['session']['status'] == 'swiping'


def test_swipe_before_start_is_rejected(api):
    created = api.create('P1', candidates=[1, 2, 3]).get_json()
    api.join(created['join_code'], 'P2')
    res = api.swipe(created['session_id'], 'P1', 1, 'like')
    assert res.status_code == 409
    assert res.get_json()['code'] == 'not_accepting_swipes'


def test_swipe_validation(api, pair_session):
    session_id = pair_session()
    res = api.swipe(session_id, 'P1', 1, 'love')
    assert res.status_code == 400
    res = api.swipe(session_id, 'P1', 99, 'like')
    assert res.status_code == 400
    assert res.get_json()['code'] == 'unknown_candidate'
    res = api.swipe(session_id, 'P1', 1, 'like', round_no=2)
    assert res.status_code == 409
    assert res.get_json()['code'] == 'stale_round'
    res = api.post('swipe', session_id, 'P1', candidate_id=1)
    assert res.status_code == 400


def test_scenario_single_mutual_like_wins(api, pair_session):
    session_id = pair_session()
    api.swipe(session_id, 'P1', 1, 'like', decided_at=1000)
    api.swipe(session_id, 'P1', 2, 'like', decided_at=1500)
    api.swipe(session_id, 'P1', 3, 'dislike', decided_at=1700)
    api.swipe(session_id, 'P2', 2, 'like', decided_at=800)
    api.swipe(session_id, 'P2', 4, 'like', decided_at=1200)
    res = api.swipe(session_id, 'P2', 5, 'dislike', decided_at=1300)
    assert res.status_code == 200
    snapshot = res.get_json()
    assert snapshot['session']['status'] == 'results'
    assert snapshot['winner']['candidate_id'] == '2'
    assert [m['candidate_id'] for m in snapshot['matches']] == ['2']


def test_mutual_likes_rank_by_fastest_decision(api, pair_session):
    session_id = pair_session(pool=(1, 2, 3), round1_limit=3, round2_limit=1)
    for cid, at in ((1, 3000), (2, 2000), (3, 1000)):
        api.swipe(session_id, 'P1', cid, 'like', decided_at=at)
    for cid, at in ((1, 2500), (2, 2400), (3, 900)):
        api.swipe(session_id, 'P2', cid, 'like', decided_at=at)
    snapshot = api.snapshot(session_id, 'P1').get_json()
    assert [m['candidate_id'] for m in snapshot['matches']] == ['3', '2', '1']


def test_scenario_no_match_then_round_two_winner(api, pair_session):
    session_id = pair_session()
    api.swipe(session_id, 'P1', 1, 'like', decided_at=900)
    api.swipe(session_id, 'P1', 2, 'dislike', decided_at=1000)
    api.swipe(session_id, 'P1', 3, 'dislike', decided_at=1100)
    api.swipe(session_id, 'P2', 1, 'dislike', decided_at=700)
    api.swipe(session_id, 'P2', 2, 'like', decided_at=800)
    snapshot = api.swipe(session_id, 'P2', 3, 'neutral', decided_at=900).get_json()
    assert snapshot['session']['status'] == 'no_match'
    assert snapshot['compromise']['candidate_id'] == '1'

    snapshot = api.post('next-round', session_id, 'P2').get_json()
    assert snapshot['session']['status'] == 'swiping'
    assert snapshot['session']['round'] == 2
    assert snapshot['deck'] == ['4', '5']
    assert snapshot['required_swipes'] == 2

    # Cards from round 1 are not part of the round 2 deck
    res = api.swipe(session_id, 'P1', 1, 'like', round_no=2)
    assert res.status_code == 400
    assert res.get_json()['code'] == 'unknown_candidate'
    # Round 1 is closed
    assert api.swipe(session_id, 'P1', 1, 'like', round_no=1).status_code == 409

    for pid in ('P1', 'P2'):
        api.swipe(session_id, pid, 4, 'dislike', round_no=2)
        snapshot = api.swipe(session_id, pid, 5, 'dislike', round_no=2).get_json()
    assert snapshot['session']['status'] == 'winner'
    assert snapshot['winner']['candidate_id'] == '1'


def test_round_two_mutual_like_wins(api, pair_session):
    session_id = pair_session()
    for pid, picks in (('P1', ('like', 'dislike', 'dislike')), ('P2', ('dislike', 'like', 'dislike'))):
        for cid, decision in zip((1, 2, 3), picks):
            api.swipe(session_id, pid, cid, decision)
    api.post('next-round', session_id, 'P1')
    api.post('next-round', session_id, 'P2')
    for pid in ('P1', 'P2'):
        api.swipe(session_id, pid, 4, 'dislike', round_no=2)
        api.swipe(session_id, pid, 5, 'like', round_no=2)
    snapshot = api.snapshot(session_id, 'P1').get_json()
    assert snapshot['session']['status'] == 'winner'
    assert snapshot['winner']['candidate_id'] == '5'


def test_scenario_double_superlike_short_circuits(api, pair_session):
    session_id = pair_session(pool=(5, 6, 7, 8, 9), round1_limit=4, round2_limit=2)
    res = api.swipe(session_id, 'P1', 7, 'superlike', decided_at=400)
    assert res.get_json()['session']['status'] == 'swiping'
    snapshot = api.swipe(session_id, 'P2', 7, 'superlike', decided_at=900).get_json()
    assert snapshot['session']['status'] == 'winner'
    assert snapshot['winner']['candidate_id'] == '7'
    assert snapshot['round_results'][0]['outcome'] == 'superlike'
    assert api.swipe(session_id, 'P1', 5, 'like').status_code == 409


def test_superlike_budget(api, pair_session):
    session_id = pair_session(pool=(1, 2, 3, 4, 5, 6), round1_limit=5, round2_limit=1)
    for cid in (1, 2, 3):
        assert api.swipe(session_id, 'P1', cid, 'superlike').status_code == 200
    # Replaying a stored superlike does not spend budget
    assert api.swipe(session_id, 'P1', 3, 'superlike').status_code == 200
    res = api.swipe(session_id, 'P1', 4, 'superlike')
    assert res.status_code == 400
    assert res.get_json()['code'] == 'superlike_limit_reached'
    assert api.snapshot(session_id, 'P1').get_json()['superlikes_left'] == 0


def test_end_round_requires_complete_round(api, pair_session):
    session_id = pair_session()
    api.swipe(session_id, 'P1', 1, 'like')
    res = api.post('end-round', session_id, 'P1')
    assert res.status_code == 409


def _group_session(api, participants=('P1', 'P2', 'P3')):
    pool = list('ABCDEFGHIJ')
    created = api.create(participants[0], mode='group', candidates=pool, round1_limit=8).get_json()
    for pid in participants[1:]:
        assert api.join(created['join_code'], pid).status_code == 201
    session_id = created['session_id']
    assert api.post('pool', session_id, participants[0]).status_code == 200
    assert api.post('start', session_id, participants[0]).status_code == 200
    return session_id


def _swipe_group_round(api, session_id):
    likes = {'P1': {'A', 'B', 'C'}, 'P2': {'A', 'B'}, 'P3': {'A'}}
    snapshot = None
    for pid, liked in likes.items():
        for offset, cid in enumerate('ABCDEFGH'):
            decision = 'like' if cid in liked else 'dislike'
            snapshot = api.swipe(session_id, pid, cid, decision, decided_at=1000 + offset * 100).get_json()
    return snapshot


def test_scenario_group_finalists_and_vote(api):
    session_id = _group_session(api)
    snapshot = _swipe_group_round(api, session_id)
    assert snapshot['session']['status'] == 'final_voting'
    assert [f['candidate_id'] for f in snapshot['finalists']] == ['A', 'B', 'C']

    assert api.post('final-vote', session_id, 'P1', candidate_id='A').status_code == 200
    assert api.post('final-vote', session_id, 'P2', candidate_id='B').status_code == 200
    res = api.post('finalize', session_id, 'P1')
    assert res.status_code == 409

    api.post('final-vote', session_id, 'P3', candidate_id='A')
    snapshot = api.post('finalize', session_id, 'P3').get_json()
    assert snapshot['session']['status'] == 'completed'
    assert snapshot['winner']['candidate_id'] == 'A'
    assert snapshot['final_vote_counts'] == {'A': 2, 'B': 1, 'C': 0}
    # Finalize again is a no-op
    assert api.post('finalize', session_id, 'P2').get_json()['winner']['candidate_id'] == 'A'


def test_final_vote_is_immutable(api):
    session_id = _group_session(api)
    _swipe_group_round(api, session_id)
    assert api.post('final-vote', session_id, 'P1', candidate_id='A').status_code == 200
    assert api.post('final-vote', session_id, 'P1', candidate_id='A').status_code == 200
    res = api.post('final-vote', session_id, 'P1', candidate_id='B')
    assert res.status_code == 409
    assert res.get_json()['code'] == 'already_voted'
    res = api.post('final-vote', session_id, 'P2', candidate_id='J')
    assert res.status_code == 400


def test_compute_finalists_is_idempotent(api):
    session_id = _group_session(api)
    _swipe_group_round(api, session_id)
    first = api.post('compute-finalists', session_id, 'P2').get_json()
    second = api.post('compute-finalists', session_id, 'P3').get_json()
    assert first['finalists'] == second['finalists']
    assert len(first['round_results']) == 1


def test_group_double_superlike_completes(api):
    session_id = _group_session(api)
    api.swipe(session_id, 'P2', 'D', 'superlike')
    snapshot = api.swipe(session_id, 'P3', 'D', 'superlike').get_json()
    assert snapshot['session']['status'] == 'completed'
    assert snapshot['winner']['candidate_id'] == 'D'


def test_cancel(api, pair_session):
    session_id = pair_session()
    snapshot = api.post('cancel', session_id, 'P1').get_json()
    assert snapshot['session']['status'] == 'cancelled'
    assert snapshot['session']['cancel_reason'] == 'host'
    assert api.post('cancel', session_id, 'P1').status_code == 200
    res = api.swipe(session_id, 'P2', 1, 'like')
    assert res.status_code == 409


def test_rematch_creates_one_new_session(api, pair_session):
    session_id = pair_session()
    assert api.post('rematch', session_id, 'P1').status_code == 409
    api.post('cancel', session_id, 'P1')

    first = api.post('rematch', session_id, 'P1')
    assert first.status_code == 201
    again = api.post('rematch', session_id, 'P1')
    assert again.get_json()['session_id'] == first.get_json()['session_id']

    fresh = first.get_json()
    assert fresh['session_id'] != session_id
    assert fresh['session']['session']['status'] == 'lobby'
    assert fresh['session']['session']['previous_session_id'] == session_id
    old = api.snapshot(session_id, 'P2').get_json()
    assert old['rematch_session_id'] == fresh['session_id']
    assert api.join(fresh['join_code'], 'P2').status_code == 201
    assert api.post('pool', fresh['session_id'], 'P1').get_json()['pool'][0]['candidate_id'] == '1'


def test_demo_partner_plays_through_public_path(api):
    created = api.create('P1', candidates=[1, 2, 3, 4, 5], round1_limit=3, round2_limit=2).get_json()
    session_id = created['session_id']
    res = api.post('demo-partner', session_id, 'P1')
    assert res.status_code == 201
    partner = [p for p in res.get_json()['participants'] if p['is_synthetic']][0]

    api.post('pool', session_id, 'P1')
    snapshot = api.post('start', session_id, 'P1').get_json()
    assert snapshot['swipe_counts'][partner['id']] == 3

    for cid in (1, 2, 3):
        snapshot = api.swipe(session_id, 'P1', cid, 'like').get_json()
    assert snapshot['session']['status'] in ('results', 'no_match')


def test_demo_partner_is_host_only(api):
    created = api.create('P1', mode='group', candidates=[1, 2]).get_json()
    api.join(created['join_code'], 'P2')
    assert api.post('demo-partner', created['session_id'], 'P2').status_code == 403


def _age_session(session_id, seconds):
    past = time.time() - seconds
    MatchSession.query.filter_by(id=session_id).update({'updated_at': past})
    Participant.query.filter_by(session_id=session_id).update({'last_seen_at': past})
    db.session.commit()


def test_idle_session_is_abandoned(api, pair_session):
    session_id = pair_session()
    _age_session(session_id, 4000)
    snapshot = api.snapshot(session_id, 'P1').get_json()
    assert snapshot['session']['status'] == 'cancelled'
    assert snapshot['session']['cancel_reason'] == 'abandoned'


def test_expired_session_is_gone(api, pair_session):
    session_id = pair_session()
    _age_session(session_id, 90000)
    res = api.snapshot(session_id, 'P1')
    assert res.status_code == 404


def test_sessions_expire_command(flask_app, api, pair_session):
    session_id = pair_session()
    _age_session(session_id, 4000)
    result = flask_app.test_cli_runner().invoke(args=['sessions-expire'])
    assert 'Cancelled 1' in result.output
    assert MatchSession.query.get(session_id).cancel_reason == 'abandoned'


def test_swipes_stop_at_round_limit(api, pair_session):
    session_id = pair_session()
    for cid in (1, 2, 3):
        assert api.swipe(session_id, 'P1', cid, 'like' if cid == 1 else 'dislike').status_code == 200
    res = api.swipe(session_id, 'P1', 4, 'like')
    assert res.status_code == 409
    assert res.get_json()['code'] == 'not_accepting_swipes'
    # Changing a decision already made is still allowed
    assert api.swipe(session_id, 'P1', 3, 'neutral').status_code == 200
    assert api.snapshot(session_id, 'P1').get_json()['my_swipe_count'] == 3

    for cid, decision in ((1, 'dislike'), (2, 'like'), (3, 'dislike')):
        snapshot = api.swipe(session_id, 'P2', cid, decision).get_json()
    assert snapshot['session']['status'] == 'no_match'

    snapshot = api.post('next-round', session_id, 'P1').get_json()
    assert snapshot['session']['status'] == 'swiping'
    assert snapshot['deck'] == ['4', '5']


def test_silent_partner_abandons_started_session(api, pair_session):
    session_id = pair_session()
    api.swipe(session_id, 'P1', 1, 'like')
    Participant.query.filter_by(session_id=session_id, participant_id='P2').update(
        {'last_seen_at': time.time() - 4000}
    )
    db.session.commit()
    snapshot = api.snapshot(session_id, 'P1').get_json()
    assert snapshot['session']['status'] == 'cancelled'
    assert snapshot['session']['cancel_reason'] == 'abandoned'


def test_silent_guest_does_not_cancel_lobby(api):
    created = api.create('P1', candidates=[1, 2, 3]).get_json()
    api.join(created['join_code'], 'P2')
    Participant.query.filter_by(session_id=created['session_id'], participant_id='P2').update(
        {'last_seen_at': time.time() - 4000}
    )
    db.session.commit()
    snapshot = api.snapshot(created['session_id'], 'P1').get_json()
    assert snapshot['session']['status'] == 'lobby'


def test_join_code_of_polled_session_is_not_reused(api, monkeypatch):
    created = api.create('P1', candidates=[1, 2, 3]).get_json()
    # The session row is old but the host keeps polling
    MatchSession.query.filter_by(id=created['session_id']).update({'updated_at': time.time() - 90000})
    db.session.commit()
    assert api.snapshot(created['session_id'], 'P1').status_code == 200

    codes = iter([list(created['join_code']), list('ZZZZZ2'), list('ZZZZZ3')])
    monkeypatch.setattr('swipematch.models.random.choices', lambda *args, **kwargs: next(codes))
    fresh = api.create('P9', candidates=[1, 2]).get_json()
    assert fresh['join_code'] != created['join_code']

    res = api.join(created['join_code'], 'P2')
    assert res.get_json()['session']['id'] == created['session_id']
