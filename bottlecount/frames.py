# Upstream video sources (pull-based)

import logging
import time
from abc import ABC, abstractmethod
from typing import Iterable, Iterator, Optional, Union

import cv2
import numpy as np

from bottlecount.config import VideoConfig
from bottlecount.data_types import Frame

logger = logging.getLogger(__name__)


class FrameSource(ABC):
    """
    Abstract pull-based frame accessor.
    read() returns the most recent frame, or None once the stream ended.
    It may block (camera I/O); the driver calls it from a worker thread.
    A frame with zero width/height means "not ready yet", not an error.
    """

    def __init__(self):
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    @abstractmethod
    def read(self) -> Optional[Frame]:
        raise NotImplementedError

    def release(self) -> None:
        """
        Free the underlying handle. Safe to call more than once.
        """
        if self._released:
            return
        self._released = True
        self._close()

    def _close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()


class VideoCaptureSource(FrameSource):
    """
    Camera index or video file via OpenCV.

    Files are stamped with their own media clock (CAP_PROP_POS_MSEC) so a
    replay is reproducible; cameras use the monotonic clock.
    """

    def __init__(self, source: Union[int, str] = 0, frame_width: int = 0, frame_height: int = 0):
        super().__init__()
        self.source = source
        self.frame_width = frame_width
        self.frame_height = frame_height
        self.is_camera = isinstance(source, int)

        self.cap = cv2.VideoCapture(source)
        if not self.cap.isOpened():
            self._released = True
            raise RuntimeError(f"Could not open video source: {source}")
        if self.is_camera:
            # buffer one frame: read() hands back the newest, not a backlog
            self.cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)

        self._frame_id = 0
        self._t0 = time.monotonic()

    @classmethod
    def from_config(cls, config: VideoConfig) -> "VideoCaptureSource":
        return cls(config.source, config.frame_width, config.frame_height)

    def read(self) -> Optional[Frame]:
        if self._released:
            return None

        ret, image = self.cap.read()
        if not ret:
            return None

        self._frame_id += 1

        # Resize to configured resolution
        if self.frame_width and self.frame_height and image is not None and image.size:
            image = cv2.resize(image, (self.frame_width, self.frame_height))

        if self.is_camera:
            timestamp_ms = (time.monotonic() - self._t0) * 1000.0
        else:
            timestamp_ms = float(self.cap.get(cv2.CAP_PROP_POS_MSEC))

        return Frame(image=image, timestamp_ms=timestamp_ms, frame_id=self._frame_id)

    def _close(self) -> None:
        self.cap.release()
        logger.debug("Released video source %s", self.source)


class IterableFrameSource(FrameSource):
    """
    Replays in-memory frames, e.g. recorded numpy arrays.
    Plain arrays are stamped at a fixed fps.
    """

    def __init__(self, frames: Iterable[Union[Frame, np.ndarray]], fps: float = 30.0):
        super().__init__()
        self._frames: Iterator = iter(frames)
        self.fps = fps
        self._frame_id = 0

    def read(self) -> Optional[Frame]:
        if self._released:
            return None
        try:
            item = next(self._frames)
        except StopIteration:
            return None

        self._frame_id += 1
        if isinstance(item, Frame):
            return item
        return Frame(
            image=item,
            timestamp_ms=(self._frame_id - 1) * 1000.0 / self.fps,
            frame_id=self._frame_id,
        )
