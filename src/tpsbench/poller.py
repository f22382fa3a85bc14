"""Convergence detection: sweep every node until all report the target final."""
import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime

from tpsbench.constants import FinalityStatus
from tpsbench.errors import BenchError, ConvergenceTimeout
from tpsbench.node import NodeHandle

log = logging.getLogger("tpsbench.poller")


@dataclass(frozen=True, slots=True)
class FinalityObservation:
    sweep: int
    node: str
    status: FinalityStatus
    observed_at: float


@dataclass
class PollResult:
    end_perf: float
    end_wall: datetime
    sweeps: int
    confirmations: dict[str, FinalityStatus]
    observations: list[FinalityObservation] = field(default_factory=list)


async def _query(node: NodeHandle, tx_hash: str) -> FinalityStatus:
    try:
        return await node.query_finality(tx_hash)
    except BenchError:
        raise
    except Exception as e:
        log.warning("Node %s finality query failed: %s: %s", node.name, e.__class__.__name__, e)
        return FinalityStatus.PENDING


async def _log_progress(node: NodeHandle) -> None:
    try:
        info = await node.fee_info()
    except BenchError:
        raise
    except Exception as e:
        log.debug("No queue info from %s: %s", node.name, e)
        return
    log.info("Entry %s %s", node.name, info.summary())


async def poll_until_converged(
    nodes: Sequence[NodeHandle],
    tx_hash: str,
    *,
    interval: float = 0.5,
    timeout: float,
    concurrent: bool = True,
    memoize: bool = False,
    progress: NodeHandle | None = None,
) -> PollResult:
    """Sweep all nodes every `interval` until one sweep sees SUCCESS everywhere.

    In sequential mode a sweep stops at the first node that is not yet
    final. With `memoize`, nodes that already reported SUCCESS are skipped;
    finality never reverts so the all-nodes condition still holds.
    """
    statuses = {n.name: FinalityStatus.PENDING for n in nodes}
    observations: list[FinalityObservation] = []
    confirmed: set[str] = set()
    sweep = 0
    try:
        async with asyncio.timeout(timeout):
            while True:
                sweep += 1
                to_query = [n for n in nodes if not (memoize and n.name in confirmed)]
                if concurrent:
                    results = await asyncio.gather(*(_query(n, tx_hash) for n in to_query))
                    observed = list(zip(to_query, results))
                else:
                    observed = []
                    for n in to_query:
                        status = await _query(n, tx_hash)
                        observed.append((n, status))
                        if status is not FinalityStatus.SUCCESS:
                            break

                now = time.perf_counter()
                for n, status in observed:
                    statuses[n.name] = status
                    observations.append(FinalityObservation(sweep, n.name, status, now))
                    log.info("Node %s status: %s", n.name, status)
                    if status is FinalityStatus.SUCCESS:
                        confirmed.add(n.name)
                    elif status is FinalityStatus.FAILED:
                        log.warning("Node %s reports %s as failed", n.name, tx_hash)

                if all(status is FinalityStatus.SUCCESS for _, status in observed):
                    end_wall = datetime.now()
                    log.info("End at: %s (sweep %s)", end_wall, sweep)
                    return PollResult(
                        end_perf=now,
                        end_wall=end_wall,
                        sweeps=sweep,
                        confirmations=dict(statuses),
                        observations=observations,
                    )

                if progress is not None:
                    await _log_progress(progress)
                await asyncio.sleep(interval)
    except TimeoutError as e:
        raise ConvergenceTimeout(tx_hash, {k: str(v) for k, v in statuses.items()}, timeout) from e
