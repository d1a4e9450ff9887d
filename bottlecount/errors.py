# Error kinds raised (or recorded) by the counting pipeline

from typing import Iterable


class CountingError(Exception):
    """
    Base class for all errors raised by bottlecount.
    """


class DetectorUnavailable(CountingError):
    """
    The detector plugin is missing or failed to initialize.
    The pipeline stays idle; nothing is counted.
    """


class DetectorInferenceFailure(CountingError):
    """
    A single detector call failed or timed out.
    Treated as "no detections this frame" by the adapter.
    """

    def __init__(self, message: str, frame_id: int = -1):
        super().__init__(message)
        self.frame_id = frame_id


class InvalidFrame(CountingError):
    """
    Zero-area or malformed frame. Never escapes the adapter.
    """


class ConfigurationInvalid(CountingError, ValueError):
    """
    Configuration rejected at session start.
    problems holds one human readable line per rejected option.
    """

    def __init__(self, problems: Iterable[str]):
        self.problems = list(problems)
        super().__init__("invalid configuration: " + "; ".join(self.problems))
