"""CLI: reproduce un fichero JSON-lines de lecturas a través del motor."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from typing import IO, Iterator, List, Optional

from .config import get_settings
from .dispatch.sink import StdoutSink
from .domain.reading import parse_reading
from .engine import QualityEngine
from .errors import ConfigurationError, SnapshotUnavailable

logger = logging.getLogger(__name__)


class ReplayClock:
    """Reloj que avanza con los timestamps de las lecturas reproducidas."""

    def __init__(self):
        self._now: Optional[datetime] = None

    def advance(self, raw) -> None:
        try:
            ts = parse_reading(raw).timestamp
        except (TypeError, ValueError):
            return
        if self._now is None or ts > self._now:
            self._now = ts

    def __call__(self) -> datetime:
        return self._now or datetime.now(timezone.utc)


def _read_lines(stream: IO[str]) -> Iterator[object]:
    for number, line in enumerate(stream, start=1):
        line = line.strip()
        if not line:
            continue
        try:
            yield json.loads(line)
        except ValueError:
            logger.warning("Line %d is not valid JSON, passing it through as raw text", number)
            yield line


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Data quality & drift monitor (JSON-lines replay)")
    p.add_argument("input", help="JSON-lines file with one reading per line ('-' for stdin)")
    p.add_argument("--cycle-every", type=int, default=1000,
                   help="run scoring + drift cycles every N readings")
    p.add_argument("--replay-clock", action="store_true",
                   help="use reading timestamps as the clock (historic files)")
    p.add_argument("--cross-group", action="append", default=[], metavar="FIELD",
                   help="run cross-group ANOVA over all streams for FIELD at the end")
    p.add_argument("--load-snapshot", action="store_true", help="restore windows from the snapshot DB")
    p.add_argument("--save-snapshot", action="store_true", help="persist windows to the snapshot DB")
    p.add_argument("--log-level", default="INFO")
    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )

    try:
        settings = get_settings()
    except ConfigurationError as e:
        logger.error("Invalid configuration: %s", e)
        return 2

    clock = ReplayClock() if args.replay_clock else None
    engine = QualityEngine(settings, sink=StdoutSink(sys.stdout), clock=clock)
    logger.info(
        "Quality monitor started: fields=%s cycle_every=%d",
        ",".join(settings.drift_fields),
        args.cycle_every,
    )

    try:
        if args.load_snapshot:
            try:
                engine.load_state()
            except SnapshotUnavailable as e:
                logger.warning("Starting without snapshot: %s", e)

        stream = sys.stdin if args.input == "-" else open(args.input, "r", encoding="utf-8")
        try:
            for count, raw in enumerate(_read_lines(stream), start=1):
                if clock is not None:
                    clock.advance(raw)
                engine.ingest(raw)
                if count % args.cycle_every == 0:
                    engine.run_scoring_cycle()
                    engine.run_drift_cycle()
                    engine.retry_pending()
        finally:
            if stream is not sys.stdin:
                stream.close()

        engine.run_scoring_cycle()
        engine.run_drift_cycle()
        for field_name in args.cross_group:
            engine.run_cross_group(field_name, engine.store.streams())
        engine.retry_pending()

        if args.save_snapshot:
            engine.save_state()
    except OSError as e:
        logger.error("Cannot read input: %s", e)
        return 1
    except SnapshotUnavailable as e:
        logger.error("Cannot save snapshot: %s", e)
        return 1
    finally:
        engine.close()

    logger.info("Done: %s", engine.stats)
    return 0


if __name__ == "__main__":
    sys.exit(main())
