"""
Autotuning Exceptions
=====================

Trial-local failures (nack, timeout, remote failure) never raise; they are
scored as infinite fitness. The exceptions below cover caller errors and
the session-level conditions that must interrupt an optimizer loop.
"""


class TuningError(Exception):
    """Base class for all autotuning errors."""


class TrialInProgressError(TuningError):
    """A second trial was requested while one is still outstanding."""


class SessionStateError(TuningError):
    """An operation is not allowed in the current session state."""


class SessionStopped(TuningError):
    """Raised at a suspension point once the session has been stopped."""


class EmergencyInterrupt(TuningError):
    """
    A trial was aborted by a safety stop on the remote system.

    Not a trial score: the whole session must pause, restore the baseline
    gains and retry the same candidate after resume.
    """

    def __init__(self, outcome):
        super().__init__(f"Trial {outcome.test_id} interrupted by emergency stop")
        self.outcome = outcome


class IdentificationError(TuningError):
    """The relay test did not yield a usable oscillation."""
