"""Engine configuration for optibatch."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from optibatch.exceptions import BatchConfigError


def _env_int(env_key: str, value: str) -> int:
    try:
        return int(value.strip())
    except ValueError as exc:
        raise BatchConfigError(f"{env_key} must be an integer number of milliseconds, got {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class BatchConfig:
    """Debounce configuration.

    Parameters
    ----------
    quiet_period_ms : int
        Quiet period in milliseconds.  A commit fires once this long has
        passed without a new submission.  Defaults to 500.
    max_wait_ms : int
        Ceiling in milliseconds measured from the first submission of a
        cycle.  A steady stream of submissions cannot postpone the commit
        past this point.  Defaults to 2500.  Must be greater than or equal
        to ``quiet_period_ms``.
    """

    quiet_period_ms: int = 500
    max_wait_ms: int = 2500

    def __post_init__(self) -> None:
        if self.quiet_period_ms <= 0:
            raise BatchConfigError(f"quiet_period_ms must be positive, got {self.quiet_period_ms}")
        if self.max_wait_ms < self.quiet_period_ms:
            raise BatchConfigError(
                f"max_wait_ms ({self.max_wait_ms}) must not be shorter than quiet_period_ms ({self.quiet_period_ms})"
            )

    @property
    def quiet_period(self) -> float:
        """Quiet period in seconds (event loop time units)."""
        return self.quiet_period_ms / 1000.0

    @property
    def max_wait(self) -> float:
        """Ceiling in seconds (event loop time units)."""
        return self.max_wait_ms / 1000.0

    @classmethod
    def from_env(cls, **overrides: Any) -> BatchConfig:
        """Create configuration from environment variables.

        Reads ``OPTIBATCH_QUIET_PERIOD_MS`` and ``OPTIBATCH_MAX_WAIT_MS``.
        Explicit keyword arguments override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        BatchConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_CONFIG_MAP = {
            "OPTIBATCH_QUIET_PERIOD_MS": "quiet_period_ms",
            "OPTIBATCH_MAX_WAIT_MS": "max_wait_ms",
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _env_int(env_key, val)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
