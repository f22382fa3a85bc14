"""Control handle for one validator process.

The harness only ever talks to a node through the NodeHandle protocol.
RippledNode is the adapter that launches a real `rippled` and drives it over
its admin JSON-RPC port.
"""
import asyncio
import contextlib
import logging
import socket
from pathlib import Path
from typing import Protocol

import httpx
from xrpl.asyncio.clients import AsyncJsonRpcClient
from xrpl.models import SubmitOnly
from xrpl.models.requests import Tx
from xrpl.models.response import Response

import tpsbench.constants as C
from tpsbench.constants import FinalityStatus, NodeState
from tpsbench.errors import NodeStateError, StartFailure
from tpsbench.fee_info import FeeInfo
from tpsbench.identity import ValidatorIdentity
from tpsbench.node_config import NodeEndpoint, write_config

log = logging.getLogger("tpsbench.node")

PROBE_INTERVAL = 0.5
HANDSHAKE_INTERVAL = 0.1
LOG_TAIL_LINES = 20
LIVE_STATES = (NodeState.READY, NodeState.RUNNING)


class RpcError(Exception):
    def __init__(self, method: str, error: str | None, message: str | None = None) -> None:
        super().__init__(f"{method}: {error}" + (f" ({message})" if message else ""))
        self.method = method
        self.error = error


class NodeHandle(Protocol):
    name: str
    endpoint: NodeEndpoint
    state: NodeState

    async def start(self) -> None: ...
    async def connect(self, peer: NodeEndpoint) -> None: ...
    async def peer_count(self) -> int: ...
    async def submit(self, tx_blob: str) -> dict: ...
    async def query_finality(self, tx_hash: str) -> FinalityStatus: ...
    async def fee_info(self) -> FeeInfo: ...
    async def stop(self) -> None: ...


def port_available(host: str, port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        try:
            s.bind((host, port))
            return True
        except OSError:
            return False


def finality_from_tx_response(resp: Response) -> FinalityStatus:
    """Map a `tx` lookup onto the harness's view of finality."""
    if not resp.is_successful():
        if resp.result.get("error") == "txnNotFound":
            return FinalityStatus.PENDING
        raise RpcError("tx", resp.result.get("error"), resp.result.get("error_message"))
    if not resp.result.get("validated"):
        return FinalityStatus.PENDING
    meta = resp.result.get("meta") or {}
    if meta.get("TransactionResult") == "tesSUCCESS":
        return FinalityStatus.SUCCESS
    return FinalityStatus.FAILED


class RippledNode:
    def __init__(
        self,
        identity: ValidatorIdentity,
        endpoint: NodeEndpoint,
        node_dir: Path,
        *,
        validator_public_keys: list[str],
        rippled_bin: str = "rippled",
        network_id: int = 0,
        quorum: int | None = None,
        rpc_timeout: float = C.RPC_TIMEOUT,
        startup_timeout: float = 30.0,
        stop_timeout: float = 10.0,
        connect_timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        client: AsyncJsonRpcClient | None = None,
    ) -> None:
        self.identity = identity
        self.name = identity.name
        self.endpoint = endpoint
        self.node_dir = Path(node_dir)
        self.validator_public_keys = validator_public_keys
        self.rippled_bin = rippled_bin
        self.network_id = network_id
        self.quorum = quorum
        self.rpc_timeout = rpc_timeout
        self.startup_timeout = startup_timeout
        self.stop_timeout = stop_timeout
        self.connect_timeout = connect_timeout
        self.state = NodeState.CREATED

        self._transport = transport
        self._http: httpx.AsyncClient | None = None
        self._client = client or AsyncJsonRpcClient(endpoint.rpc_url)
        self._proc: asyncio.subprocess.Process | None = None
        self._log_file = None

    def __repr__(self) -> str:
        return f"RippledNode({self.name}, {self.endpoint.rpc_url}, {self.state})"

    @property
    def log_path(self) -> Path:
        return self.node_dir / "rippled.log"

    @property
    def argv(self) -> list[str]:
        argv = [self.rippled_bin, "--conf", str((self.node_dir / "rippled.cfg").resolve()), "--start"]
        if self.quorum is not None:
            argv += ["--quorum", str(self.quorum)]
        return argv

    def _require(self, *states: NodeState) -> None:
        if self.state not in states:
            raise NodeStateError(f"{self.name} is {self.state}, expected one of {[str(s) for s in states]}")

    def _mark_running(self) -> None:
        self._require(*LIVE_STATES)
        self.state = NodeState.RUNNING

    def log_tail(self, lines: int = LOG_TAIL_LINES) -> str:
        try:
            return "\n".join(self.log_path.read_text(errors="replace").splitlines()[-lines:])
        except OSError:
            return "<no log>"

    async def _admin(self, method: str, **params) -> dict:
        payload = {"method": method, "params": [params]}
        r = await self._http.post(self.endpoint.rpc_url, json=payload)
        r.raise_for_status()
        result = r.json()["result"]
        if result.get("status") == "error":
            raise RpcError(method, result.get("error"), result.get("error_message"))
        return result

    async def start(self) -> None:
        self._require(NodeState.CREATED)
        self.state = NodeState.STARTING

        for port in self.endpoint.ports:
            if not port_available(self.endpoint.host, port):
                raise StartFailure(self.name, f"port {port} is already in use")

        self.node_dir.mkdir(parents=True, exist_ok=True)
        write_config(
            self.node_dir,
            self.identity,
            self.endpoint,
            self.validator_public_keys,
            network_id=self.network_id,
        )
        self._log_file = self.log_path.open("w", encoding="utf-8")
        self._http = httpx.AsyncClient(timeout=self.rpc_timeout, transport=self._transport)

        log.info("Starting %s: %s", self.name, " ".join(self.argv))
        try:
            self._proc = await asyncio.create_subprocess_exec(
                *self.argv,
                stdout=self._log_file,
                stderr=asyncio.subprocess.STDOUT,
                cwd=self.node_dir,
            )
        except OSError as e:
            await self.stop()
            raise StartFailure(self.name, f"could not launch {self.rippled_bin}: {e}") from e

        try:
            async with asyncio.timeout(self.startup_timeout):
                await self._probe()
        except TimeoutError as e:
            await self.stop()
            raise StartFailure(
                self.name, f"admin RPC not reachable after {self.startup_timeout}s\n{self.log_tail()}"
            ) from e
        except BaseException:
            # Covers StartFailure from the probe and cancellation by a sibling's failure.
            await self.stop()
            raise

        self.state = NodeState.READY
        log.info("Started %s (PID: %s) rpc=%s peer=%s", self.name, self._proc.pid,
                 self.endpoint.rpc_url, self.endpoint)

    async def _probe(self) -> None:
        attempt = 0
        while True:
            attempt += 1
            if self._proc.returncode is not None:
                raise StartFailure(
                    self.name, f"exited with code {self._proc.returncode} during startup\n{self.log_tail()}"
                )
            try:
                await self._admin("server_info")
                log.debug("%s RPC endpoint responding (attempt %s)", self.name, attempt)
                return
            except (httpx.HTTPError, RpcError) as e:
                log.debug("%s not ready yet (attempt %s): %s", self.name, attempt, e.__class__.__name__)
                await asyncio.sleep(PROBE_INTERVAL)

    async def connect(self, peer: NodeEndpoint) -> None:
        """Ask for a link to `peer` and wait until it shows up in `peers`.

        Raises TimeoutError when the handshake does not finish within
        `connect_timeout`.
        """
        self._mark_running()
        await self._admin("connect", ip=peer.host, port=peer.peer_port)
        log.debug("%s connecting to %s", self.name, peer)
        async with asyncio.timeout(self.connect_timeout):
            while not await self._has_peer(peer):
                await asyncio.sleep(HANDSHAKE_INTERVAL)
        log.debug("%s linked to %s", self.name, peer)

    async def _has_peer(self, peer: NodeEndpoint) -> bool:
        result = await self._admin("peers")
        return any(p.get("address") == str(peer) for p in result.get("peers") or [])

    async def peer_count(self) -> int:
        self._mark_running()
        result = await self._admin("peers")
        return len(result.get("peers") or [])

    async def submit(self, tx_blob: str) -> dict:
        self._mark_running()
        resp = await asyncio.wait_for(self._client.request(SubmitOnly(tx_blob=tx_blob)), timeout=C.SUBMIT_TIMEOUT)
        if not resp.is_successful():
            raise RpcError("submit", resp.result.get("error"), resp.result.get("error_message"))
        return resp.result

    async def query_finality(self, tx_hash: str) -> FinalityStatus:
        self._mark_running()
        resp = await asyncio.wait_for(self._client.request(Tx(transaction=tx_hash)), timeout=self.rpc_timeout)
        return finality_from_tx_response(resp)

    async def fee_info(self) -> FeeInfo:
        self._mark_running()
        return FeeInfo.from_fee_result(await self._admin("fee"))

    async def stop(self) -> None:
        if self.state is NodeState.STOPPED:
            return
        try:
            if self._proc is not None and self._proc.returncode is None:
                if self.state in LIVE_STATES:
                    try:
                        await self._admin("stop")
                    except (httpx.HTTPError, RpcError) as e:
                        log.warning("%s did not accept stop (%s), terminating", self.name, e)
                await self._wait_or_kill()
                log.info("Stopped %s (exit %s)", self.name, self._proc.returncode)
        finally:
            if self._http is not None:
                await self._http.aclose()
                self._http = None
            if self._log_file is not None:
                self._log_file.close()
                self._log_file = None
            self.state = NodeState.STOPPED

    async def _wait_or_kill(self) -> None:
        proc = self._proc
        for escalate in (None, proc.terminate, proc.kill):
            if escalate is not None:
                log.warning("%s still running, sending %s", self.name, escalate.__name__)
                with contextlib.suppress(ProcessLookupError):
                    escalate()
            try:
                async with asyncio.timeout(self.stop_timeout):
                    await proc.wait()
                return
            except TimeoutError:
                continue
        raise TimeoutError(f"{self.name} (PID {proc.pid}) survived kill")
