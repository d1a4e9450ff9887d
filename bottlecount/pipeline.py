# Frame loop: frame source -> evidence source -> count sink

import asyncio
import logging
from typing import Callable, Optional

from bottlecount.config import PipelineConfig
from bottlecount.data_types import Frame
from bottlecount.evidence import CountingEvidenceSource
from bottlecount.frames import FrameSource

logger = logging.getLogger(__name__)

CountSink = Callable[[int], None]


class PipelineDriver:
    """
    Drives one counting session.

    Behavior:
      - Always pulls the latest frame; nothing is queued, so frames that
        arrive while the detector is busy are simply never seen.
      - Frames closer than evidence.interval_ms to the last processed frame
        are skipped (cadence throttling on frame timestamps).
      - Every processed frame calls on_count exactly once, with a delta >= 0.
      - Errors inside the evidence source are defects: re-raised with
        debug=True, otherwise logged and counted as a 0 delta.
    """

    def __init__(
        self,
        config: PipelineConfig,
        frame_source: FrameSource,
        evidence: CountingEvidenceSource,
        on_count: CountSink,
    ):
        # reject bad settings before any frame is read
        self.config = config.validate()
        self.frame_source = frame_source
        self.evidence = evidence
        self.on_count = on_count
        self.debug = config.debug

        self.frames_read = 0
        self.frames_processed = 0
        self.frames_skipped = 0

        self._running = False
        self._stopped = False
        self._reading = False
        self._last_processed_ms: Optional[float] = None

    @property
    def is_running(self) -> bool:
        return self._running

    def should_process(self, frame: Frame) -> bool:
        interval = self.evidence.interval_ms
        if interval <= 0 or self._last_processed_ms is None:
            return True
        elapsed = frame.timestamp_ms - self._last_processed_ms
        # clock went backwards (source restarted): resync
        if elapsed < 0:
            return True
        return elapsed >= interval

    async def process_frame(self, frame: Frame) -> Optional[int]:
        """
        Run one frame through the evidence source.
        Returns the delta handed to the sink, or None if the frame was skipped.
        """
        if not self.should_process(frame):
            self.frames_skipped += 1
            return None
        self._last_processed_ms = frame.timestamp_ms

        try:
            delta = await self.evidence.process(frame)
            if delta < 0:
                raise ValueError(f"{self.evidence.name} produced a negative delta: {delta}")
        except Exception:
            if self.debug:
                raise
            logger.exception("Frame %d: %s evidence failed", frame.frame_id, self.evidence.name)
            delta = 0

        # stop() may have been called while the detector was running
        if self._stopped:
            return None

        self.frames_processed += 1
        self.on_count(int(delta))
        return int(delta)

    async def run(self) -> None:
        """
        Loop until the frame source ends or stop() is called.
        """
        if self._stopped:
            raise RuntimeError("driver was stopped; create a new session to count again")

        self._running = True
        logger.info("Counting session started (%s)", self.evidence.name)
        try:
            while self._running:
                frame = await self._next_frame()
                if frame is None or not self._running:
                    break
                self.frames_read += 1

                await self.process_frame(frame)

                # let other tasks (and stop()) run between frames
                await asyncio.sleep(0)
        finally:
            self._shutdown()
            logger.info(
                "Counting session ended: %d frames read, %d processed, %d skipped",
                self.frames_read,
                self.frames_processed,
                self.frames_skipped,
            )

    def stop(self) -> None:
        """
        Halt the loop and release the frame source (once).
        """
        self._stopped = True
        self._running = False
        # a read in flight still owns the capture; run() releases it when the read returns
        if not self._reading:
            self._shutdown()

    async def _next_frame(self) -> Optional[Frame]:
        # camera reads block for up to a frame period, keep them off the event loop
        self._reading = True
        try:
            return await asyncio.to_thread(self.frame_source.read)
        finally:
            self._reading = False

    def reset(self) -> None:
        """
        Start counting from scratch: identities, cooldowns and cadence clock.
        """
        self.evidence.reset()
        self._last_processed_ms = None
        logger.info("Counting state reset")

    def _shutdown(self) -> None:
        self._running = False
        if not self.frame_source.released:
            self.frame_source.release()
            self.evidence.close()
