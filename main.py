"""Command-line entry point for PastForward."""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Optional, Sequence

from pastforward.config import load_config
from pastforward.logging_utils import configure_logging
from pastforward.runtime import PastForwardRuntime


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Transform one photo with a creative mode and optionally build an album page."
    )
    parser.add_argument("--mode", help="Mode id, e.g. time-travel")
    parser.add_argument("--image", help="Path to the source photo")
    parser.add_argument("--album", action="store_true", help="Compose the album page when complete")
    parser.add_argument("--concurrency", type=int, help="Override scheduler.concurrency_limit")
    parser.add_argument("--config", help="Extra YAML configuration file applied last")
    parser.add_argument("--log-level", help="Console log level override")
    parser.add_argument("--list-modes", action="store_true", help="Print available modes and exit")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        result = load_config(args.config, include_sources=True)
    except (OSError, ValueError) as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 1
    config, sources = result.config, result.sources
    logging_config = dict(config.get("logging", {}))
    logging_config.setdefault("log_dir", config.get("paths", {}).get("logs"))
    if args.log_level:
        logging_config["console_level"] = args.log_level
    logger = configure_logging(logging_config)
    logger.info("Loaded configuration from: %s", ", ".join(sources) or "<defaults>")

    runtime = PastForwardRuntime(config, logger)
    if args.list_modes:
        try:
            catalogue = runtime.catalogue()
        except (OSError, ValueError) as exc:
            logger.error("Cannot load modes: %s", exc)
            return 1
        for mode in catalogue.values():
            print(f"{mode.id:<18} {mode.kind:<6} {len(mode.keys)} image(s)  {mode.title}")
        return 0
    if not args.mode or not args.image:
        parser.error("--mode and --image are required unless --list-modes is given")
    if args.concurrency is not None and args.concurrency < 1:
        parser.error("--concurrency must be at least 1")

    try:
        success = asyncio.run(
            runtime.run(args.mode, args.image, album=args.album, concurrency=args.concurrency)
        )
    except KeyboardInterrupt:  # pragma: no cover - manual interruption
        logger.warning("Interrupted by user.")
        return 1
    except Exception as exc:  # pragma: no cover - defensive logging
        logger.exception("Runtime terminated due to unexpected error: %s", exc)
        return 1
    return 0 if success else 2


if __name__ == "__main__":
    sys.exit(main())
