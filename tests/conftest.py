# Make tests robust regardless of where pytest is launched from,
# and keep tests headless (no GUI popups).

import asyncio
import os
import sys
from pathlib import Path

import numpy as np
import pytest

# --- Ensure project root is on sys.path ---
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# --- Headless plotting ---
os.environ.setdefault("MPLBACKEND", "Agg")
import matplotlib
matplotlib.use("Agg")

from pid_autotune.baseline import BaselineGuard, ParameterStore
from pid_autotune.config import HarnessConfig
from pid_autotune.harness import TrialHarness
from pid_autotune.link import MockLink
from pid_autotune.progress import StateChangeEvent
from pid_autotune.session import TuningSession

BASELINE = {'kp_b': 10.0, 'ki_b': 0.5, 'kd_b': 1.0}


# --- Scripted device behaviours: message -> list of events to send back ---

def ok(itae=1.0, overshoot=0.0, steady_state_error=0.0):
    def behaviour(message):
        tid = message['testId']
        return [
            {'type': 'ack', 'command': message['type'], 'testId': tid, 'success': True},
            {'type': 'status_update', 'testId': tid, 'message': 'test_started'},
            {'type': 'metrics_result', 'testId': tid, 'itae': itae, 'overshoot': overshoot,
             'steady_state_error': steady_state_error},
            {'type': 'test_complete', 'testId': tid, 'success': True},
        ]
    return behaviour


def bowl(message):
    """Smooth fitness landscape with its minimum at kp=5, kd=1."""
    itae = (message['kp'] - 5.0) ** 2 + (message['kd'] - 1.0) ** 2 + 0.5
    return ok(itae=itae)(message)


def nack(message):
    return [{'type': 'ack', 'command': message['type'], 'testId': message['testId'],
             'success': False, 'message': 'busy'}]


def fail(reason='sensor_fault'):
    def behaviour(message):
        tid = message['testId']
        return [
            {'type': 'ack', 'command': message['type'], 'testId': tid, 'success': True},
            {'type': 'test_complete', 'testId': tid, 'success': False, 'reason': reason},
        ]
    return behaviour


emergency = fail('interrupted_by_emergency')


def drop(message):
    return []


def relay_wave(amplitude=0.5, period=1.0, dt=0.01, duration=10.0, relay=2.0):
    """Sinusoidal angle stream followed by a successful completion."""
    def behaviour(message):
        tid = message['testId']
        events = [{'type': 'ack', 'command': message['type'], 'testId': tid, 'success': True}]
        for k in range(int(round(duration / dt))):
            t = k * dt
            angle = amplitude * np.sin(2 * np.pi * t / period)
            events.append({'type': 'relay_state', 'testId': tid, 'time': t, 'angle': angle,
                           'relay_output': relay if angle <= 0 else -relay})
        events.append({'type': 'test_complete', 'testId': tid, 'success': True})
        return events
    return behaviour


class FakeDevice:
    """
    Remote end of a MockLink answering each trial command from a script.

    ``script`` is consumed one behaviour per trial; ``default`` answers the
    rest. Replies are delivered on the next loop iteration, or after
    ``delay`` seconds.
    """

    def __init__(self, default=None, script=None, delay=0.0):
        self.link = MockLink(self._respond)
        self.default = default or ok()
        self.script = list(script or [])
        self.trials = []
        self.delay = delay

    def _respond(self, message, link):
        if message['type'] not in ('run_metrics_test', 'run_relay_test'):
            return
        self.trials.append(dict(message))
        behaviour = self.script.pop(0) if self.script else self.default
        events = behaviour(message)
        loop = asyncio.get_running_loop()
        if self.delay:
            loop.call_later(self.delay, self._deliver, events)
        else:
            loop.call_soon(self._deliver, events)

    def _deliver(self, events):
        for event in events:
            self.link.dispatch(event)

    def set_params(self):
        return self.link.sent_of_type('set_param')

    def gains_of(self, index):
        trial = self.trials[index]
        return (trial['kp'], trial['ki'], trial['kd'])


class AutoResume:
    """Sink that resumes the session shortly after every pause."""

    def __init__(self, session, delay=0.02):
        self.session = session
        self.delay = delay
        self.pauses = 0

    def __call__(self, event):
        if isinstance(event, StateChangeEvent) and event.new == 'paused':
            self.pauses += 1
            asyncio.get_running_loop().call_later(self.delay, self.session.resume)


def fast_harness_config(**overrides):
    values = dict(trial_duration_ms=0, deadline_margin_ms=50, min_timeout_ms=50,
                  max_timeout_ms=1000)
    values.update(overrides)
    return HarnessConfig(**values)


def make_session(device, loop='balance', sink=None, initial=None, harness_config=None):
    store = ParameterStore(device.link, dict(BASELINE if initial is None else initial))
    harness = TrialHarness(device.link, harness_config or fast_harness_config(), seed=0)
    guard = BaselineGuard(device.link, store, loop=loop)
    return TuningSession(harness, guard, sink=sink, poll_interval=0.01)


@pytest.fixture
def device():
    return FakeDevice()
