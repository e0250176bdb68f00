import pytest

from pid_autotune.baseline import BaselineGuard, ParameterStore
from pid_autotune.gains import PIDGains
from pid_autotune.link import MockLink


def test_capture_reads_loop_keys():
    link = MockLink()
    store = ParameterStore(link, {'kp_b': 12.0, 'ki_b': 0.3, 'kd_b': 0.8, 'kp_s': 1.0})
    guard = BaselineGuard(link, store)
    assert guard.capture() == PIDGains(12.0, 0.3, 0.8)
    assert link.sent == []


def test_missing_key_defaults_to_zero():
    link = MockLink()
    guard = BaselineGuard(link, ParameterStore(link, {'kp_b': 5.0}))
    assert guard.capture() == PIDGains(5.0, 0.0, 0.0)


def test_restore_writes_speed_loop_keys():
    link = MockLink()
    store = ParameterStore(link, {'kp_s': 0.5, 'ki_s': 0.1, 'kd_s': 0.02})
    guard = BaselineGuard(link, store, loop='speed')
    guard.capture()
    guard.apply(PIDGains(2.0, 0.0, 0.0))
    link.sent.clear()

    guard.restore()

    assert [m['key'] for m in link.sent] == ['kp_s', 'ki_s', 'kd_s']
    assert [m['value'] for m in link.sent] == [0.5, 0.1, 0.02]
    assert store.get('kp_s') == 0.5
    assert guard.restore_count == 1


def test_restore_before_capture_raises():
    link = MockLink()
    with pytest.raises(RuntimeError):
        BaselineGuard(link, ParameterStore(link)).restore()


def test_store_follows_sync_events():
    link = MockLink()
    store = ParameterStore(link)
    link.dispatch({'type': 'set_param', 'key': 'kp_b', 'value': '7.5'})
    link.dispatch({'type': 'set_param', 'key': 'ki_b', 'value': 'abc'})
    link.dispatch({'type': 'status_update', 'key': 'kd_b', 'value': 1.0})

    assert store.get('kp_b') == 7.5
    assert 'ki_b' not in store
    assert 'kd_b' not in store
    assert BaselineGuard(link, store).capture().kp == 7.5


def test_unknown_loop_rejected():
    link = MockLink()
    with pytest.raises(ValueError):
        BaselineGuard(link, ParameterStore(link), loop='yaw')
