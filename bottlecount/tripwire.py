# Frame-differencing tripwire: counts items crossing a horizontal line, no model needed

import logging
from enum import Enum
from typing import Optional, Tuple

import cv2
import numpy as np

from bottlecount.config import TripwireConfig

logger = logging.getLogger(__name__)


class TripwireState(Enum):
    IDLE = "idle"
    ARMED = "armed"
    TRIGGERED = "triggered"


def strip_bounds(frame_height: int, line_y: float, strip_height: int) -> Tuple[int, int]:
    """
    Row range [start, stop) of the strip centered on the line,
    clamped to the frame instead of failing near the edges.
    """
    start = max(0, int(frame_height * line_y) - strip_height // 2)
    start = min(start, max(0, frame_height - 1))
    stop = min(frame_height, start + strip_height)
    return start, stop


def extract_strip(image: np.ndarray, line_y: float, strip_height: int) -> Optional[np.ndarray]:
    """
    Grayscale band of the frame around the tripwire line.
    Returns None for frames without pixels.
    """
    if image is None or image.ndim < 2 or image.shape[0] == 0 or image.shape[1] == 0:
        return None

    start, stop = strip_bounds(image.shape[0], line_y, strip_height)
    band = image[start:stop]

    if band.ndim == 2:
        return band.astype(np.uint8, copy=True)
    if band.shape[2] == 4:
        return cv2.cvtColor(band, cv2.COLOR_BGRA2GRAY)
    return cv2.cvtColor(band, cv2.COLOR_BGR2GRAY)


def change_fraction(prev: np.ndarray, curr: np.ndarray, pixel_delta: int) -> float:
    """
    Fraction of pixels whose intensity moved by more than pixel_delta.
    Strips of different shape (frame size changed) compare as no change.
    """
    if prev is None or curr is None or prev.shape != curr.shape or prev.size == 0:
        return 0.0
    diff = cv2.absdiff(prev, curr)
    return float(np.count_nonzero(diff > pixel_delta)) / float(diff.size)


class TripwireSensor:
    """
    Detector-free evidence source.

    Each sampled frame contributes a thin grayscale strip at line_y. When
    enough of the strip changed since the previous sample, one crossing is
    counted and further crossings are ignored for cooldown_ms. All timing
    runs on frame timestamps, so replaying the same frames gives the same
    counts.

    States:
      IDLE      - not started, or stopped
      ARMED     - sampling, ready to fire
      TRIGGERED - fired recently; inside the cooldown window
    """

    def __init__(
        self,
        line_y: float = 0.5,
        change_threshold: float = 0.15,
        pixel_delta: int = 30,
        strip_height: int = 30,
        cooldown_ms: float = 400,
        flash_ms: float = 200,
    ):
        self.line_y = line_y
        self.change_threshold = change_threshold
        self.pixel_delta = pixel_delta
        self.strip_height = strip_height
        self.cooldown_ms = cooldown_ms
        self.flash_ms = flash_ms

        self.trigger_count = 0
        self.last_change_fraction = 0.0
        self._running = False
        self._prev_strip: Optional[np.ndarray] = None
        self._cooldown_until: Optional[float] = None
        self._flash_until: Optional[float] = None
        self._now: Optional[float] = None

    @classmethod
    def from_config(cls, config: TripwireConfig) -> "TripwireSensor":
        return cls(
            line_y=config.line_y,
            change_threshold=config.change_threshold,
            pixel_delta=config.pixel_delta,
            strip_height=config.strip_height,
            cooldown_ms=config.cooldown_ms,
            flash_ms=config.flash_ms,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def state(self) -> TripwireState:
        if not self._running:
            return TripwireState.IDLE
        if self.in_cooldown(self._now):
            return TripwireState.TRIGGERED
        return TripwireState.ARMED

    def in_cooldown(self, timestamp_ms: Optional[float]) -> bool:
        if self._cooldown_until is None or timestamp_ms is None:
            return False
        return timestamp_ms < self._cooldown_until

    def is_flashing(self, timestamp_ms: Optional[float] = None) -> bool:
        """
        True during the short visual-feedback window after a fire.
        """
        now = self._now if timestamp_ms is None else timestamp_ms
        if self._flash_until is None or now is None:
            return False
        return now < self._flash_until

    def start(self) -> None:
        self._clear()
        self._running = True

    def stop(self) -> None:
        self._running = False
        self._clear()

    def reset(self) -> None:
        """
        Clear the count and all timing state. Keeps the running flag.
        """
        self._clear()
        self.trigger_count = 0

    def _clear(self) -> None:
        self._prev_strip = None
        self._cooldown_until = None
        self._flash_until = None
        self._now = None
        self.last_change_fraction = 0.0

    def process(self, image: np.ndarray, timestamp_ms: float) -> int:
        """
        Sample one frame. Returns 1 if a crossing fired, else 0.
        Starts the sensor on first use.
        """
        if not self._running:
            self.start()
        self._now = timestamp_ms

        strip = extract_strip(image, self.line_y, self.strip_height)
        fired = 0

        if strip is not None and self._prev_strip is not None:
            fraction = change_fraction(self._prev_strip, strip, self.pixel_delta)
            self.last_change_fraction = fraction

            if fraction >= self.change_threshold and not self.in_cooldown(timestamp_ms):
                fired = 1
                self.trigger_count += 1
                self._cooldown_until = timestamp_ms + self.cooldown_ms
                self._flash_until = timestamp_ms + self.flash_ms
                logger.debug(
                    "Tripwire fired at %.0f ms (%.1f%% changed), total %d",
                    timestamp_ms,
                    fraction * 100.0,
                    self.trigger_count,
                )

        # a not-ready (zero-area) frame keeps the last real strip as the reference
        if strip is not None:
            self._prev_strip = strip
        return fired
