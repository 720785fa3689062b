"""Background record processing.

Run in-app (``RECORD_WORKERS`` > 0) or as its own process::

    python -m healthwallet.worker --workers 2

Every worker goes through the atomic claim, so any number of threads and
processes can share one database.
"""
from __future__ import annotations

import argparse
import logging
import os
import threading
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

# Env must be loaded before the package modules read their settings
load_dotenv(Path(__file__).resolve().parent / ".env")

from healthwallet.services.record_pipeline import PROCESSING_TIMEOUT_SECONDS, RecordPipeline  # noqa: E402

logger = logging.getLogger("healthwallet")

RECORD_WORKERS = int(os.getenv("RECORD_WORKERS", "0"))
WORKER_POLL_SECONDS = float(os.getenv("WORKER_POLL_SECONDS", "5"))
WATCHDOG_INTERVAL_SECONDS = float(os.getenv("WATCHDOG_INTERVAL_SECONDS", "60"))


class WorkerPool:
    def __init__(
        self,
        pipeline: Optional[RecordPipeline] = None,
        workers: int = 1,
        poll_seconds: float = WORKER_POLL_SECONDS,
        watchdog_seconds: float = WATCHDOG_INTERVAL_SECONDS,
        processing_timeout: int = PROCESSING_TIMEOUT_SECONDS,
        batch_size: int = 5,
    ):
        self.pipeline = pipeline or RecordPipeline()
        self.workers = max(1, workers)
        self.poll_seconds = poll_seconds
        self.watchdog_seconds = watchdog_seconds
        self.processing_timeout = processing_timeout
        self.batch_size = batch_size
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def _work_loop(self) -> None:
        while not self._stop.is_set():
            try:
                claimed = self.pipeline.run_once(self.batch_size)
            except Exception:
                logger.exception({"function": "work_loop"})
                claimed = 0
            # drain the queue before sleeping
            if not claimed:
                self._stop.wait(self.poll_seconds)

    def _watchdog_loop(self) -> None:
        while not self._stop.wait(self.watchdog_seconds):
            try:
                self.pipeline.sweep_stale(self.processing_timeout)
            except Exception:
                logger.exception({"function": "watchdog_loop"})

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._threads = [
            threading.Thread(target=self._work_loop, name=f"record-worker-{i}", daemon=True)
            for i in range(self.workers)
        ]
        self._threads.append(threading.Thread(target=self._watchdog_loop, name="record-watchdog", daemon=True))
        for t in self._threads:
            t.start()
        logger.info({"function": "worker_pool_start", "workers": self.workers})

    def stop(self, timeout: float = 10.0) -> None:
        self._stop.set()
        for t in self._threads:
            t.join(timeout)
        self._threads = []
        logger.info({"function": "worker_pool_stop"})


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Process uploaded health records")
    parser.add_argument("--workers", type=int, default=max(1, RECORD_WORKERS), help="Worker threads")
    parser.add_argument("--once", action="store_true", help="Drain the queue once, sweep, then exit")
    parser.add_argument("--batch-size", type=int, default=10, help="Records claimed per poll")
    args = parser.parse_args(argv)

    from healthwallet.models import init_db
    from healthwallet.utils.logging_config import configure_logging

    configure_logging()
    init_db()
    pipeline = RecordPipeline()

    if args.once:
        total = 0
        while True:
            claimed = pipeline.run_once(args.batch_size)
            total += claimed
            if not claimed:
                break
        failed = pipeline.sweep_stale()
        logger.info({"function": "worker_once", "claimed": total, "timed_out": len(failed)})
        return 0

    pool = WorkerPool(pipeline, workers=args.workers, batch_size=args.batch_size)
    pool.start()
    try:
        while pool.running:
            threading.Event().wait(1.0)
    except KeyboardInterrupt:
        pass
    finally:
        pool.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
