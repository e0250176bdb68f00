"""
Simulated Remote Device
=======================

In-process stand-in for the robot firmware, speaking the same message
contract as the real link:

- ``set_param``          updates the live gains and is echoed back
- ``run_metrics_test``   ack, ``status_update``, ``metrics_result``, ``test_complete``
- ``run_relay_test``     ack, ``relay_state`` stream, ``test_complete``
- ``cancel_test``        aborts the running test

The plant is three cascaded first-order lags, which is the smallest model
that sustains a relay limit cycle and goes unstable at high proportional
gain. Faults can be injected on chosen trial numbers (1-based):
'nack', 'drop' (no reply at all), 'fail' and 'emergency'.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np

from .gains import LOOP_PARAM_KEYS, PIDGains
from .link import LinkFacade
from .objectives import summarize_response

logger = logging.getLogger(__name__)

FAULTS = ('nack', 'drop', 'fail', 'emergency')


@dataclass
class PlantParams:
    """Physical parameters of the simulated plant."""
    gain: float = 1.0
    time_constants: Tuple[float, float, float] = (0.5, 0.1, 0.05)  # s
    dt: float = 0.005  # s
    actuator_limit: float = 50.0
    fall_limit: float = 10.0  # |angle| at which the robot is considered fallen
    noise_std: float = 0.0


class LagPlant:
    """
    Third-order lag plant.

        G(s) = K / ((t1 s + 1)(t2 s + 1)(t3 s + 1))
    """

    def __init__(self, params: Optional[PlantParams] = None, seed: Optional[int] = None):
        self.params = params or PlantParams()
        self.rng = np.random.default_rng(seed)
        self.state = np.zeros(3)

    def reset(self) -> None:
        self.state = np.zeros(3)

    @property
    def output(self) -> float:
        return float(self.state[2])

    def measure(self) -> float:
        if self.params.noise_std > 0:
            return self.output + self.rng.normal(0.0, self.params.noise_std)
        return self.output

    def step(self, u: float) -> float:
        p = self.params
        u = float(np.clip(u, -p.actuator_limit, p.actuator_limit))
        tau = p.time_constants
        x = self.state
        inputs = (p.gain * u, x[0], x[1])
        for i in range(3):
            x[i] += p.dt * (inputs[i] - x[i]) / tau[i]
        return self.output


class PIDController:
    """
    Discrete PID as run by the firmware.

    Derivative on measurement with a first-order filter, back-calculation
    anti-windup and output clamping.
    """

    def __init__(self, gains: PIDGains, output_limit: float = 50.0,
                 derivative_tau: float = 0.01, anti_windup_gain: float = 1.0):
        self.gains = gains
        self.output_limit = output_limit
        self.derivative_tau = derivative_tau
        self.anti_windup_gain = anti_windup_gain
        self.reset()

    def reset(self) -> None:
        self._integral = 0.0
        self._prev_measurement = None
        self._derivative = 0.0

    def compute(self, setpoint: float, measurement: float, dt: float) -> float:
        g = self.gains
        error = setpoint - measurement

        self._integral += g.ki * error * dt

        if self._prev_measurement is None:
            self._prev_measurement = measurement
        raw_derivative = -(measurement - self._prev_measurement) / dt
        self._prev_measurement = measurement
        alpha = dt / (self.derivative_tau + dt)
        self._derivative += alpha * (raw_derivative - self._derivative)

        unclamped = g.kp * error + self._integral + g.kd * self._derivative
        output = min(max(unclamped, -self.output_limit), self.output_limit)
        if output != unclamped:
            self._integral += self.anti_windup_gain * (output - unclamped)
        return output


class SimulatedRobot(LinkFacade):
    """
    Link whose far end is a simulated robot.

    Replies are produced on the running event loop, never synchronously
    inside ``send``, so the caller sees the same ordering as over a radio.

    Args:
        loop: control loop whose gains the metrics test exercises
        plant: plant parameters
        initial_params: remote parameter values at power-up
        setpoint: step height of the metrics test
        trial_duration_s: length of a metrics test
        relay_duration_s: hard limit of a relay test
        relay_sample_period: time between ``relay_state`` samples
        response_delay: wall-clock latency added before each reply (s)
        faults: trial number -> 'nack' | 'drop' | 'fail' | 'emergency'
        seed: random seed for measurement noise
    """

    def __init__(
        self,
        loop: str = 'balance',
        plant: Optional[PlantParams] = None,
        initial_params: Optional[Dict[str, float]] = None,
        setpoint: float = 1.0,
        trial_duration_s: float = 5.0,
        relay_duration_s: float = 30.0,
        relay_sample_period: float = 0.01,
        response_delay: float = 0.0,
        faults: Optional[Dict[int, str]] = None,
        seed: Optional[int] = None,
    ):
        super().__init__()
        if loop not in LOOP_PARAM_KEYS:
            raise ValueError(f"Unknown control loop: {loop}")
        for fault in (faults or {}).values():
            if fault not in FAULTS:
                raise ValueError(f"Unknown fault '{fault}', expected one of {FAULTS}")

        self.loop = loop
        self.plant = LagPlant(plant, seed=seed)
        self.setpoint = setpoint
        self.trial_duration_s = trial_duration_s
        self.relay_duration_s = relay_duration_s
        self.relay_sample_period = relay_sample_period
        self.response_delay = response_delay
        self.faults = dict(faults or {})

        self.params: Dict[str, float] = {
            'kp_b': 8.0, 'ki_b': 0.5, 'kd_b': 0.4,
            'kp_s': 1.0, 'ki_s': 0.2, 'kd_s': 0.05,
            'kp_p': 2.0, 'ki_p': 0.1, 'kd_p': 0.2,
        }
        self.params.update(initial_params or {})

        self.sent: List[dict] = []
        self.trial_count = 0
        self._task: Optional[asyncio.Task] = None
        self._active_test_id = None

    @property
    def live_gains(self) -> PIDGains:
        kp, ki, kd = (self.params[k] for k in LOOP_PARAM_KEYS[self.loop])
        return PIDGains(kp=kp, ki=ki, kd=kd)

    def sync_params(self) -> None:
        """Announce every parameter, as the firmware does on connect."""
        for key, value in self.params.items():
            self.dispatch({'type': 'set_param', 'key': key, 'value': value})

    # ------------------------------------------------------------------
    # Incoming commands
    # ------------------------------------------------------------------

    def send(self, message: dict) -> None:
        self.sent.append(dict(message))
        command = message.get('type')

        if command == 'set_param':
            key = message.get('key')
            self.params[key] = float(message.get('value', 0.0))
            self.dispatch({'type': 'set_param', 'key': key, 'value': self.params[key]})
        elif command == 'cancel_test':
            self._cancel()
        elif command in ('run_metrics_test', 'run_relay_test'):
            self.trial_count += 1
            fault = self.faults.get(self.trial_count)
            self._task = asyncio.get_running_loop().create_task(self._run_test(message, fault))
        else:
            logger.warning("Simulated robot ignoring unknown command %r", command)

    def _cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            if self._active_test_id is not None:
                self.dispatch({'type': 'test_complete', 'testId': self._active_test_id,
                               'success': False, 'reason': 'cancelled'})
        self._active_test_id = None

    async def _run_test(self, message: dict, fault: Optional[str]) -> None:
        command = message['type']
        test_id = message.get('testId')
        if self.response_delay:
            await asyncio.sleep(self.response_delay)

        if fault == 'drop':
            logger.debug("Dropping trial %s", test_id)
            return
        if fault == 'nack':
            self.dispatch({'type': 'ack', 'command': command, 'testId': test_id,
                           'success': False, 'message': 'busy'})
            return

        self.dispatch({'type': 'ack', 'command': command, 'testId': test_id, 'success': True})
        self.dispatch({'type': 'status_update', 'testId': test_id, 'message': 'test_started'})
        if fault in ('fail', 'emergency'):
            reason = 'interrupted_by_emergency' if fault == 'emergency' else 'sensor_fault'
            self.dispatch({'type': 'test_complete', 'testId': test_id,
                           'success': False, 'reason': reason})
            return

        self._active_test_id = test_id
        try:
            if command == 'run_metrics_test':
                await self._metrics_test(message, test_id)
            else:
                await self._relay_test(float(message.get('amplitude', 2.0)), test_id)
        finally:
            self._active_test_id = None

    async def _metrics_test(self, message: dict, test_id) -> None:
        for key, name in zip(LOOP_PARAM_KEYS[self.loop], ('kp', 'ki', 'kd')):
            if name in message:
                self.params[key] = float(message[name])

        time, response, fell = self.simulate_step(self.live_gains)
        await asyncio.sleep(0)
        if fell:
            self.dispatch({'type': 'test_complete', 'testId': test_id,
                           'success': False, 'reason': 'fall_detected'})
            return
        metrics = summarize_response(time, response, self.setpoint)
        self.dispatch({'type': 'metrics_result', 'testId': test_id, **metrics})
        self.dispatch({'type': 'test_complete', 'testId': test_id, 'success': True})

    async def _relay_test(self, amplitude: float, test_id) -> None:
        dt = self.plant.params.dt
        every = max(1, int(round(self.relay_sample_period / dt)))
        n_steps = int(self.relay_duration_s / dt)

        self.plant.reset()
        for k in range(n_steps):
            angle = self.plant.measure()
            # relay around zero, first push is positive
            u = amplitude if angle <= 0 else -amplitude
            self.plant.step(u)
            if k % every == 0:
                self.dispatch({'type': 'relay_state', 'testId': test_id,
                               'time': k * dt, 'angle': angle, 'relay_output': u})
                await asyncio.sleep(0)
        self.dispatch({'type': 'test_complete', 'testId': test_id, 'success': True})

    # ------------------------------------------------------------------
    # Plant simulation
    # ------------------------------------------------------------------

    def simulate_step(self, gains: PIDGains) -> Tuple[np.ndarray, np.ndarray, bool]:
        """
        Closed-loop step response.

        Returns:
            (time, response, fell) - fell is True if the angle left the safe range
        """
        dt = self.plant.params.dt
        n_steps = int(self.trial_duration_s / dt)
        controller = PIDController(gains, output_limit=self.plant.params.actuator_limit)
        self.plant.reset()

        time = np.arange(n_steps) * dt
        response = np.zeros(n_steps)
        for k in range(n_steps):
            measurement = self.plant.measure()
            u = controller.compute(self.setpoint, measurement, dt)
            response[k] = self.plant.step(u)
            if not np.isfinite(response[k]) or abs(response[k]) > self.plant.params.fall_limit:
                return time[:k + 1], response[:k + 1], True
        return time, response, False
