"""
Lightweight tracing for commands and scheduled jobs.

Ledger retries, repository latency and batch jobs that partially fail are hard to
reconstruct from plain log lines. Every command and job runs inside ``trace_span`` so
it leaves one structured latency record behind.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager

logger = logging.getLogger("leave_engine.trace")


@contextmanager
def trace_span(name: str, **metadata):
    """
    Measure execution duration of an engine operation.

    Example log:
    [TRACE] submit_leave_request duration_ms=3.12 outcome=ok employee=E001

    Always logs completion, records whether the block raised, never suppresses
    exceptions.
    """
    start = time.perf_counter()
    outcome = "ok"
    try:
        yield
    except Exception as e:
        outcome = type(e).__name__
        raise
    finally:
        duration_ms = (time.perf_counter() - start) * 1000

        meta = " ".join(f"{k}={v}" for k, v in metadata.items())
        logger.info("[TRACE] %s duration_ms=%.2f outcome=%s %s", name, duration_ms, outcome, meta)
