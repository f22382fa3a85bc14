"""Reverse-order submission through a single entry node.

Transactions go in strictly descending sequence order, one blocking round
trip at a time, so the entry node has to hold every arrival until the lowest
sequence shows up last.
"""
import logging
import time
from dataclasses import dataclass
from datetime import datetime

import tpsbench.constants as C
from tpsbench.batch import Batch
from tpsbench.errors import BenchError, SubmissionFailure
from tpsbench.node import NodeHandle

log = logging.getLogger("tpsbench.injector")

PROGRESS_EVERY = 1000


@dataclass(frozen=True, slots=True)
class InjectionStart:
    """Measurement start: taken immediately before the index 0 submission."""

    perf: float
    wall: datetime
    submitted: int


def is_accepted(engine_result: str | None) -> bool:
    return isinstance(engine_result, str) and not engine_result.startswith(C.FATAL_ENGINE_PREFIXES)


async def inject(entry: NodeHandle, batch: Batch) -> InjectionStart:
    if not len(batch):
        raise ValueError("cannot inject an empty batch")

    submitted = 0
    perf = wall = None
    for txn in batch.submission_order():
        if txn.index == 0:
            wall = datetime.now()
            perf = time.perf_counter()
            log.info("Start at: %s", wall)
        try:
            result = await entry.submit(txn.tx_blob)
        except BenchError:
            raise
        except Exception as e:
            raise SubmissionFailure(txn.index, None, f"{e.__class__.__name__}: {e}") from e

        er = result.get("engine_result")
        if not is_accepted(er):
            raise SubmissionFailure(txn.index, er, result.get("engine_result_message") or "rejected by entry node")
        submitted += 1
        log.debug("Submitted txn %s seq=%s -> %s", txn.index, txn.sequence, er)
        if submitted % PROGRESS_EVERY == 0:
            log.info("Submitted %s/%s to %s", submitted, len(batch), entry.name)

    log.info("Submitted all %s transactions to %s", submitted, entry.name)
    return InjectionStart(perf=perf, wall=wall, submitted=submitted)
