"""Cluster bring-up: identities, port slots, concurrent start, full mesh."""
import asyncio
import itertools
import logging
from collections.abc import Callable, Iterator
from pathlib import Path

from tpsbench.config import BenchConfig
from tpsbench.errors import BenchError, ConnectFailure, StartFailure, TeardownFailure
from tpsbench.identity import ValidatorIdentity, validator_identities
from tpsbench.node import NodeHandle, RippledNode
from tpsbench.node_config import NodeEndpoint

log = logging.getLogger("tpsbench.cluster")

# (slot index, identity, endpoint, all validator public keys) -> handle
NodeFactory = Callable[[int, ValidatorIdentity, NodeEndpoint, list[str]], NodeHandle]


def full_mesh_edges(k: int) -> list[tuple[int, int]]:
    """Every unordered pair of node indices, each exactly once."""
    return list(itertools.combinations(range(k), 2))


def _primary(eg: BaseExceptionGroup) -> BaseException:
    """First harness error inside a (possibly nested) task group failure."""
    for e in eg.exceptions:
        if isinstance(e, BaseExceptionGroup):
            e = _primary(e)
        if isinstance(e, BenchError):
            return e
    return eg.exceptions[0]


class Cluster:
    """The started nodes. Used as an async context manager it always tears down."""

    def __init__(self, nodes: list[NodeHandle]) -> None:
        self.nodes = list(nodes)

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self) -> Iterator[NodeHandle]:
        return iter(self.nodes)

    def __getitem__(self, index: int) -> NodeHandle:
        return self.nodes[index]

    async def teardown(self) -> None:
        results = await asyncio.gather(*(n.stop() for n in self.nodes), return_exceptions=True)
        failures = {n.name: r for n, r in zip(self.nodes, results) if isinstance(r, BaseException)}
        if failures:
            raise TeardownFailure(failures)
        log.info("Stopped all %s nodes", len(self.nodes))

    async def __aenter__(self) -> "Cluster":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        try:
            await self.teardown()
        except TeardownFailure as tf:
            if exc is None:
                raise
            # The primary failure stays the one raised.
            log.error("%s (after: %s)", tf.report(), exc)
        return False


class ClusterBuilder:
    def __init__(
        self,
        identities: list[ValidatorIdentity],
        endpoints: list[NodeEndpoint],
        node_factory: NodeFactory,
    ) -> None:
        if not identities:
            raise ValueError("a cluster needs at least one validator")
        if len(identities) != len(endpoints):
            raise ValueError(f"{len(identities)} identities for {len(endpoints)} endpoints")
        if len({i.public_key for i in identities}) != len(identities):
            raise ValueError("validator identities must be unique")
        self.identities = identities
        self.endpoints = endpoints
        self.node_factory = node_factory

    @classmethod
    def from_config(cls, config: BenchConfig, node_factory: NodeFactory | None = None) -> "ClusterBuilder":
        net = config.network
        k = config.num_validators
        identities = validator_identities(net.validator_name, k, net.validator_seeds)
        endpoints = [NodeEndpoint.for_slot(net.host, net.base_port, i) for i in range(k)]
        return cls(identities, endpoints, node_factory or rippled_node_factory(config))

    @property
    def edges(self) -> list[tuple[int, int]]:
        return full_mesh_edges(len(self.identities))

    def create(self) -> Cluster:
        public_keys = [i.public_key for i in self.identities]
        return Cluster([
            self.node_factory(i, identity, endpoint, public_keys)
            for i, (identity, endpoint) in enumerate(zip(self.identities, self.endpoints))
        ])

    async def _start(self, node: NodeHandle) -> None:
        try:
            await node.start()
        except BenchError:
            raise
        except Exception as e:
            raise StartFailure(node.name, f"{e.__class__.__name__}: {e}") from e

    async def _connect(self, node: NodeHandle, peer: NodeHandle) -> None:
        try:
            await node.connect(peer.endpoint)
        except BenchError:
            raise
        except TimeoutError as e:
            raise ConnectFailure(node.name, peer.name, "handshake did not complete") from e
        except Exception as e:
            raise ConnectFailure(node.name, peer.name, f"{e.__class__.__name__}: {e}") from e

    async def bring_up(self, cluster: Cluster) -> Cluster:
        """Start every node, then connect every edge once.

        The first failure cancels whatever is still in flight, stops every
        node and is re-raised.
        """
        try:
            async with asyncio.TaskGroup() as tg:
                for node in cluster:
                    tg.create_task(self._start(node), name=f"start-{node.name}")
            log.info("Started %s nodes", len(cluster))

            async with asyncio.TaskGroup() as tg:
                for a, b in self.edges:
                    tg.create_task(self._connect(cluster[a], cluster[b]), name=f"connect-{a}-{b}")
            log.info("Linked %s peer pairs (full mesh of %s)", len(self.edges), len(cluster))
        except BaseExceptionGroup as eg:
            primary = _primary(eg)
            log.error("Cluster build failed: %s", primary)
            try:
                await cluster.teardown()
            except TeardownFailure as tf:
                log.error("%s (after: %s)", tf.report(), primary)
            raise primary
        return cluster

    async def build(self) -> Cluster:
        return await self.bring_up(self.create())


def node_dir(config: BenchConfig, identity: ValidatorIdentity) -> Path:
    """`network_dir/<base_port>/<name>`: runs on different base ports never share a directory."""
    return Path(config.network.network_dir) / str(config.network.base_port) / identity.name


def rippled_node_factory(config: BenchConfig) -> NodeFactory:
    net, to = config.network, config.timeout

    def make(index: int, identity: ValidatorIdentity, endpoint: NodeEndpoint, public_keys: list[str]) -> RippledNode:
        return RippledNode(
            identity,
            endpoint,
            node_dir(config, identity),
            validator_public_keys=public_keys,
            rippled_bin=net.rippled_bin,
            network_id=net.network_id,
            quorum=net.quorum,
            rpc_timeout=to.rpc,
            startup_timeout=to.startup,
            stop_timeout=to.stop,
            connect_timeout=to.connect,
        )

    return make
