# End-to-end counting demo: python -m bottlecount --video 0

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from typing import List, Optional

from bottlecount.config import LoggingConfig, PipelineConfig, load_config
from bottlecount.counter import SessionCounter
from bottlecount.errors import ConfigurationInvalid, DetectorUnavailable
from bottlecount.evidence import build_evidence
from bottlecount.frames import VideoCaptureSource
from bottlecount.pipeline import PipelineDriver

logger = logging.getLogger("bottlecount")


def setup_logging(config: LoggingConfig) -> None:
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if config.log_path is not None:
        config.log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(config.log_path))

    logging.basicConfig(
        level=getattr(logging, config.level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=handlers,
    )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Count bottles and cans passing a camera")
    parser.add_argument(
        "--video",
        type=str,
        default=None,
        help="Video file path or camera index (e.g. 0 for default webcam)",
    )
    parser.add_argument("--mode", choices=("detector", "tripwire"), default=None)
    parser.add_argument("--config", type=str, default=None, help="YAML configuration file")
    parser.add_argument("--debug", action="store_true", help="Crash on pipeline defects instead of logging them")
    parser.add_argument("--log-level", type=str, default=None)
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> PipelineConfig:
    cfg = load_config(args.config) if args.config else PipelineConfig()

    if args.video is not None:
        # If argument is a digit, treat it as camera index; else as path
        source = int(args.video) if args.video.isdigit() else args.video
        cfg = replace(cfg, video=replace(cfg.video, source=source))
    if args.mode is not None:
        cfg = replace(cfg, mode=args.mode)
    if args.debug:
        cfg = replace(cfg, debug=True)
    if args.log_level is not None:
        cfg = replace(cfg, logging=replace(cfg.logging, level=args.log_level))
    return cfg.validate()


async def run_session(config: PipelineConfig) -> int:
    """
    frame -> evidence (detector + zone + tracker, or tripwire) -> counter
    Returns the final count.
    """
    evidence = build_evidence(config)
    counter = SessionCounter()
    source = VideoCaptureSource.from_config(config.video)

    driver = PipelineDriver(config, source, evidence, counter)
    try:
        await driver.run()
    finally:
        driver.stop()
    return counter.total


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    try:
        config = build_config(args)
    except ConfigurationInvalid as exc:
        logging.basicConfig()
        logger.error("%s", exc)
        return 2

    setup_logging(config.logging)

    try:
        total = asyncio.run(run_session(config))
    except DetectorUnavailable as exc:
        logger.error("Detector unavailable: %s", exc)
        return 1
    except RuntimeError as exc:
        logger.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130

    logger.info("Final count: %d", total)
    return 0


if __name__ == "__main__":
    sys.exit(main())
