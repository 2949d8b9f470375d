"""Hold-still accumulator: temporal debouncer for the capture decision.

Converts a per-tick "fully good" signal into a single capture event once
the pose has been held long enough. Short glitches are forgiven once
progress has started; a false start (bad tick with no progress) resets
immediately.
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from faceenroll.config import HoldConfig

logger = logging.getLogger(__name__)


class HoldStillAccumulator:
    """Counts good ticks with a bounded bad-tick streak tolerance.

    Per tick:

    - good: ``good_ticks += 1``, ``bad_streak = 0``, remember the descriptor
    - bad: ``bad_streak += 1``; if the streak exceeds ``max_bad_ticks`` or no
      progress has been made yet, progress resets to 0

    When ``good_ticks`` reaches ``required_good_ticks`` the descriptor from
    the most recent good tick is emitted once and the accumulator halts.

    Args:
        config: Hold thresholds.

    Example:
        >>> acc = HoldStillAccumulator()
        >>> for sample in samples:
        ...     captured = acc.update(sample.good, sample.descriptor)
        ...     if captured is not None:
        ...         break
    """

    def __init__(self, config: Optional[HoldConfig] = None):
        self.config = config or HoldConfig()
        self.good_ticks = 0
        self.bad_streak = 0
        self._last_good_descriptor: Optional[np.ndarray] = None
        self._captured = False

    @property
    def captured(self) -> bool:
        """Whether the capture event has already been emitted."""
        return self._captured

    @property
    def progress(self) -> float:
        """Hold progress in [0, 1]."""
        return min(1.0, self.good_ticks / self.config.required_good_ticks)

    def reset(self) -> None:
        """Position lost: drop all progress."""
        self.good_ticks = 0
        self.bad_streak = 0
        self._last_good_descriptor = None

    def update(self, is_good: bool, descriptor: Optional[np.ndarray] = None) -> Optional[np.ndarray]:
        """Feed one tick.

        Args:
            is_good: Whether this tick was fully good.
            descriptor: The tick's descriptor (only kept for good ticks).

        Returns:
            The captured descriptor on the tick the hold completes, else None.
        """
        if self._captured:
            return None

        if is_good:
            self.good_ticks += 1
            self.bad_streak = 0
            if descriptor is not None:
                self._last_good_descriptor = descriptor
            if self.good_ticks == 1:
                logger.debug("Hold started")
        else:
            self.bad_streak += 1
            if self.bad_streak > self.config.max_bad_ticks or self.good_ticks == 0:
                if self.good_ticks > 0:
                    logger.debug(
                        "Position lost after %d good ticks, resetting hold", self.good_ticks,
                    )
                self.reset()

        if self.good_ticks >= self.config.required_good_ticks and self._last_good_descriptor is not None:
            self._captured = True
            captured = self._last_good_descriptor
            self._last_good_descriptor = None
            logger.info("Hold complete after %d good ticks", self.good_ticks)
            return captured

        return None


__all__ = ["HoldStillAccumulator"]
