import asyncio
import logging
from collections.abc import Sequence

from tpsbench.errors import BenchError, ReadinessTimeout
from tpsbench.node import NodeHandle

log = logging.getLogger("tpsbench.readiness")


async def _peer_count(node: NodeHandle) -> int | None:
    try:
        return await node.peer_count()
    except BenchError:
        raise
    except Exception as e:
        log.debug("%s peer count unavailable: %s", node.name, e)
        return None


async def wait_for_peers(
    nodes: Sequence[NodeHandle],
    expected: int | None = None,
    *,
    timeout: float,
    interval: float = 0.5,
) -> dict[str, int]:
    """Block until every node reports at least `expected` peers (default K-1).

    Raises ReadinessTimeout naming the nodes still short of peers.
    """
    if expected is None:
        expected = len(nodes) - 1
    counts: dict[str, int | None] = {n.name: None for n in nodes}
    lagging = dict(counts)
    try:
        async with asyncio.timeout(timeout):
            while True:
                results = await asyncio.gather(*(_peer_count(n) for n in nodes))
                counts.update(zip((n.name for n in nodes), results))
                lagging = {name: c for name, c in counts.items() if c is None or c < expected}
                if not lagging:
                    log.info("All %s nodes have >= %s peers", len(nodes), expected)
                    return counts
                log.info("Waiting for peers (%s/%s ready): %s",
                         len(nodes) - len(lagging), len(nodes),
                         ", ".join(f"{name}={c}" for name, c in lagging.items()))
                await asyncio.sleep(interval)
    except TimeoutError as e:
        raise ReadinessTimeout(expected, lagging, timeout) from e
