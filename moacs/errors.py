from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Tuple


class MoacsError(Exception):
    """Base class for every error raised by the package."""


class ConfigurationError(MoacsError, ValueError):
    """Invalid tuning value or policy name."""


class InvariantViolationError(MoacsError):
    """A computed utilization or wastage left its [0, 1] range."""

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.context = context

    def as_result(self) -> InvariantViolation:
        return InvariantViolation(str(self), dict(self.context))


class StateBusyError(MoacsError):
    """An OptimizerState is already serving another call."""


# -------------------------------------------------
# Typed error results
# -------------------------------------------------

@dataclass(frozen=True)
class InvariantViolation:
    message: str
    context: Dict[str, object] = field(default_factory=dict)


@dataclass(frozen=True)
class InfeasibleInput:
    message: str


@dataclass(frozen=True)
class UnresolvedLockIn:
    """A migration cycle the sequencer could not break."""
    host_ids: Tuple[int, ...]   # hosts on the cycle, in walk order
    vm_ids: Tuple[int, ...]     # pending VMs whose edges form the cycle
