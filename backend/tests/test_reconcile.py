import json

from swipematch.services.sessions.reconcile import next_client_action


def _snapshot(status, mode='pair', is_host=False, **extra):
    snapshot = {
        'session': {'status': status, 'mode': mode, 'min_participants': 2},
        'participant_count': 2,
        'is_host': is_host,
        'round_complete': False,
        'my_done': False,
    }
    snapshot.update(extra)
    return snapshot


def test_lobby_waits_for_enough_participants():
    assert next_client_action(_snapshot('lobby', is_host=True, participant_count=1)) == 'wait'
    assert next_client_action(_snapshot('lobby', is_host=True)) == 'build_pool'
    assert next_client_action(_snapshot('lobby')) == 'wait'


def test_pool_ready_only_host_starts():
    assert next_client_action(_snapshot('pool_ready', is_host=True)) == 'start'
    assert next_client_action(_snapshot('pool_ready')) == 'wait'


def test_swiping_flushes_pending_swipes_first():
    snap = _snapshot('swiping', round_complete=True)
    assert next_client_action(snap, pending_swipes=2) == 'send_swipes'
    assert next_client_action(snap) == 'end_round'
    assert next_client_action(_snapshot('swiping', mode='group', round_complete=True)) == 'compute_finalists'
    assert next_client_action(_snapshot('swiping', my_done=True)) == 'wait'
    assert next_client_action(_snapshot('swiping')) == 'swipe'


def test_round_transitions():
    assert next_client_action(_snapshot('no_match')) == 'next_round'
    assert next_client_action(_snapshot('finalist_computation', mode='group')) == 'compute_finalists'


def test_final_voting():
    snap = _snapshot('final_voting', mode='group', my_final_vote=None, final_votes_cast=[])
    assert next_client_action(snap) == 'final_vote'
    snap.update(my_final_vote='A', final_votes_cast=['P1'])
    assert next_client_action(snap) == 'wait'
    snap.update(final_votes_cast=['P1', 'P2'])
    assert next_client_action(snap) == 'finalize'


def test_terminal_statuses():
    for status in ('results', 'winner', 'completed'):
        assert next_client_action(_snapshot(status)) == 'show_winner'
    assert next_client_action(_snapshot('cancelled')) == 'stop'


def test_snapshot_hides_other_participants_latency(api, pair_session):
    session_id = pair_session()
    api.swipe(session_id, 'P2', 1, 'like', decided_at=1234)
    snapshot = api.snapshot(session_id, 'P1').get_json()
    assert snapshot['swipe_counts'] == {'P1': 0, 'P2': 1}
    assert snapshot['my_swipes'] == {}
    assert 'decided_at' not in json.dumps(snapshot)

    own = api.snapshot(session_id, 'P2').get_json()
    assert own['my_swipes'] == {'1': 'like'}
    assert own['round_deadline'] == own['session']['round_started_at'] + 120


def test_snapshot_reads_are_stable(api, pair_session):
    session_id = pair_session()
    api.swipe(session_id, 'P1', 1, 'like')
    first = api.snapshot(session_id, 'P2').get_json()
    second = api.snapshot(session_id, 'P2').get_json()
    first['session'].pop('updated_at')
    second['session'].pop('updated_at')
    assert first == second
    assert first['poll_interval_sec'] == 2


def test_client_drives_pair_session_to_the_end(api, pair_session):
    session_id = pair_session(pool=(1, 2, 3), round1_limit=2, round2_limit=1)
    picks = {'P1': {'1': 'like', '2': 'dislike', '3': 'dislike'}, 'P2': {'1': 'dislike', '2': 'like', '3': 'like'}}
    for _ in range(20):
        done = True
        for pid in ('P1', 'P2'):
            snapshot = api.snapshot(session_id, pid).get_json()
            action = next_client_action(snapshot)
            if action in ('show_winner', 'stop'):
                continue
            done = False
            if action == 'swipe':
                cid = next(c for c in snapshot['deck'] if c not in snapshot['my_swipes'])
                api.swipe(session_id, pid, cid, picks[pid][cid], round_no=snapshot['session']['round'])
            elif action in ('end_round', 'next_round'):
                api.post(action.replace('_', '-'), session_id, pid)
        if done:
            break
    snapshot = api.snapshot(session_id, 'P1').get_json()
    assert snapshot['session']['status'] == 'winner'
    assert snapshot['winner']['candidate_id'] == '3'
