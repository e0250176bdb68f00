"""
Baseline Safety Guard
=====================

Keeps the plant on known-safe gains whenever a search is not actively
running. The gains in effect before a session starts are captured once and
pushed back to the remote system on pause, stop and emergency interrupts.
"""

import logging
from typing import Dict, Optional

from .gains import LOOP_PARAM_KEYS, PIDGains
from .link import LinkFacade

logger = logging.getLogger(__name__)


class ParameterStore:
    """
    Last known remote configuration.

    Updated from every outgoing ``set_param`` written through the guard and
    from incoming ``set_param`` sync events on the link.
    """

    def __init__(self, link: Optional[LinkFacade] = None, initial: Optional[Dict[str, float]] = None):
        self._values: Dict[str, float] = dict(initial or {})
        if link is not None:
            link.add_listener(self._on_event)

    def _on_event(self, event: dict) -> None:
        if event.get('type') == 'set_param' and 'key' in event:
            self.set(event['key'], event.get('value'))

    def set(self, key: str, value) -> None:
        try:
            self._values[key] = float(value)
        except (TypeError, ValueError):
            logger.warning("Ignoring non-numeric value for %s: %r", key, value)

    def get(self, key: str, default: Optional[float] = None) -> Optional[float]:
        return self._values.get(key, default)

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def snapshot(self) -> Dict[str, float]:
        return dict(self._values)


class BaselineGuard:
    """Captures and restores the baseline gains of one control loop."""

    def __init__(self, link: LinkFacade, store: ParameterStore, loop: str = 'balance'):
        if loop not in LOOP_PARAM_KEYS:
            raise ValueError(f"Unknown control loop: {loop}")
        self.link = link
        self.store = store
        self.loop = loop
        self.baseline: Optional[PIDGains] = None
        self.restore_count = 0

    @property
    def keys(self):
        return LOOP_PARAM_KEYS[self.loop]

    def capture(self) -> PIDGains:
        """Snapshot the gains currently believed active on the remote system."""
        values = []
        for key in self.keys:
            if key not in self.store:
                logger.warning("No known value for %s, baseline uses 0.0", key)
            values.append(self.store.get(key, 0.0))
        self.baseline = PIDGains(kp=values[0], ki=values[1], kd=values[2])
        logger.info("Captured baseline %s for loop '%s'", self.baseline, self.loop)
        return self.baseline

    def apply(self, gains: PIDGains) -> None:
        """Write gains to the remote system as ``set_param`` commands."""
        for key, value in zip(self.keys, (gains.kp, gains.ki, gains.kd)):
            self.link.send({'type': 'set_param', 'key': key, 'value': float(value)})
            self.store.set(key, value)

    def restore(self) -> PIDGains:
        """Push the captured baseline back to the remote system."""
        if self.baseline is None:
            raise RuntimeError("restore() called before capture()")
        self.apply(self.baseline)
        self.restore_count += 1
        logger.info("Restored baseline %s", self.baseline)
        return self.baseline
