import logging

from bottlecount.data_types import CountingState

logger = logging.getLogger(__name__)


class SessionCounter:
    """
    Reference count sink for the pipeline.

    Behavior:
      - Called once per processed frame with a delta >= 0.
      - total is what the user sees and can reset; session_total keeps
        running until the session itself is reset.
      - increment()/decrement() are manual corrections (tally use).
    """

    def __init__(self):
        self.state = CountingState()

    def __call__(self, delta: int) -> None:
        self.add(delta)

    @property
    def total(self) -> int:
        return self.state.total

    @property
    def session_total(self) -> int:
        return self.state.session_total

    def add(self, delta: int) -> CountingState:
        if delta < 0:
            raise ValueError(f"count delta must be >= 0, got {delta}")
        if delta:
            self.state.total += delta
            self.state.session_total += delta
            logger.info("+%d item(s), total %d", delta, self.state.total)
        return self.state

    def increment(self) -> CountingState:
        return self.add(1)

    def decrement(self) -> CountingState:
        """
        Undo one count. Never goes below zero.
        """
        if self.state.total > 0:
            self.state.total -= 1
            self.state.session_total = max(0, self.state.session_total - 1)
        return self.state

    def reset(self) -> None:
        self.state.total = 0

    def reset_session(self) -> None:
        self.state = CountingState()
