"""One benchmark run: build -> gate -> generate -> inject -> poll -> teardown."""
import asyncio
import logging
import threading
from dataclasses import dataclass
from datetime import datetime

from xrpl.wallet import Wallet

from tpsbench.batch import funding_wallet, generate_batch
from tpsbench.cluster import ClusterBuilder, NodeFactory
from tpsbench.config import BenchConfig
from tpsbench.constants import FinalityStatus, Stage
from tpsbench.errors import DeadlineExceeded
from tpsbench.injector import inject
from tpsbench.poller import poll_until_converged
from tpsbench.readiness import wait_for_peers

log = logging.getLogger("tpsbench.bench")


def throughput(num_txns: int, elapsed_ms: float) -> float:
    if elapsed_ms <= 0:
        return float("inf")
    return num_txns * 1000.0 / elapsed_ms


@dataclass
class BenchResult:
    num_txns: int
    num_nodes: int
    target_hash: str
    start_time: datetime
    end_time: datetime
    elapsed_ms: float
    tps: float
    sweeps: int
    confirmations: dict[str, FinalityStatus]

    def to_dict(self) -> dict:
        return {
            "num_txns": self.num_txns,
            "num_nodes": self.num_nodes,
            "target_hash": self.target_hash,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "elapsed_ms": self.elapsed_ms,
            "tps": self.tps,
            "sweeps": self.sweeps,
            "confirmations": {k: str(v) for k, v in self.confirmations.items()},
        }


async def run_benchmark(
    config: BenchConfig,
    *,
    node_factory: NodeFactory | None = None,
    wallet: Wallet | None = None,
) -> BenchResult:
    builder = ClusterBuilder.from_config(config, node_factory)
    wallet = wallet or funding_wallet(config.funding_account.seed)
    overall = config.timeout.overall
    stage = Stage.BUILD

    async with builder.create() as cluster:
        deadline = asyncio.timeout(overall)
        try:
            async with deadline:
                log.info("Building %s-node cluster", len(cluster))
                await builder.bring_up(cluster)

                stage = Stage.READINESS
                await wait_for_peers(
                    cluster.nodes,
                    timeout=config.timeout.readiness,
                    interval=config.poll.interval,
                )

                stage = Stage.GENERATE
                # Cancelling the await leaves the worker thread running; the event stops it.
                cancel = threading.Event()
                try:
                    batch = await asyncio.to_thread(
                        generate_batch,
                        config.num_txns,
                        wallet,
                        first_sequence=config.funding_account.first_sequence,
                        amount=config.transaction.amount,
                        fee=config.transaction.fee,
                        network_id=config.network.network_id,
                        cancel=cancel,
                    )
                finally:
                    cancel.set()

                stage = Stage.INJECT
                entry = cluster[config.entry_node]
                start = await inject(entry, batch)

                stage = Stage.POLL
                polled = await poll_until_converged(
                    cluster.nodes,
                    batch.target.tx_hash,
                    interval=config.poll.interval,
                    timeout=config.timeout.convergence,
                    concurrent=config.poll.concurrent,
                    memoize=config.poll.memoize_confirmed,
                    progress=entry,
                )
        except TimeoutError as e:
            if deadline.expired():
                raise DeadlineExceeded(overall, stage) from e
            raise

        elapsed_ms = (polled.end_perf - start.perf) * 1000.0
        result = BenchResult(
            num_txns=len(batch),
            num_nodes=len(cluster),
            target_hash=batch.target.tx_hash,
            start_time=start.wall,
            end_time=polled.end_wall,
            elapsed_ms=elapsed_ms,
            tps=throughput(len(batch), elapsed_ms),
            sweeps=polled.sweeps,
            confirmations=polled.confirmations,
        )
    log.info("Elapsed time (ms): %.0f TPS: %.2f", result.elapsed_ms, result.tps)
    return result
