import json
import socket
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest import IsolatedAsyncioTestCase, TestCase

import httpx
from xrpl.models.response import Response, ResponseStatus

from tpsbench.constants import FinalityStatus, NodeState
from tpsbench.errors import NodeStateError, StartFailure
from tpsbench.identity import validator_identities
from tpsbench.node import RippledNode, RpcError, finality_from_tx_response, port_available
from tpsbench.node_config import NodeEndpoint, render_validators, write_config

TX = "B" * 64


def free_endpoint() -> NodeEndpoint:
    ports = []
    socks = [socket.socket() for _ in range(3)]
    try:
        for s in socks:
            s.bind(("127.0.0.1", 0))
            ports.append(s.getsockname()[1])
    finally:
        for s in socks:
            s.close()
    return NodeEndpoint("127.0.0.1", *ports)


def ok(result: dict) -> Response:
    return Response(status=ResponseStatus.SUCCESS, result=result)


def err(error: str) -> Response:
    return Response(status=ResponseStatus.ERROR, result={"error": error, "error_message": error})


class FakeClient:
    def __init__(self, *responses: Response) -> None:
        self.responses = list(responses)
        self.requests = []

    async def request(self, req):
        self.requests.append(req)
        return self.responses.pop(0)


class TestFinality(TestCase):
    def test_not_found_is_pending(self):
        self.assertIs(finality_from_tx_response(err("txnNotFound")), FinalityStatus.PENDING)

    def test_unvalidated_is_pending(self):
        resp = ok({"validated": False, "meta": {"TransactionResult": "tesSUCCESS"}})
        self.assertIs(finality_from_tx_response(resp), FinalityStatus.PENDING)

    def test_validated_success(self):
        resp = ok({"validated": True, "meta": {"TransactionResult": "tesSUCCESS"}})
        self.assertIs(finality_from_tx_response(resp), FinalityStatus.SUCCESS)

    def test_validated_with_other_result_failed(self):
        resp = ok({"validated": True, "meta": {"TransactionResult": "tecUNFUNDED_PAYMENT"}})
        self.assertIs(finality_from_tx_response(resp), FinalityStatus.FAILED)

    def test_other_errors_raise(self):
        with self.assertRaises(RpcError):
            finality_from_tx_response(err("noNetwork"))


class TestNodeConfig(TestCase):
    def test_endpoint_slots(self):
        e = NodeEndpoint.for_slot("127.0.0.1", 51200, 3)
        self.assertEqual(e.ports, (51230, 51231, 51232))
        self.assertEqual(e.rpc_url, "http://127.0.0.1:51231")
        self.assertEqual(str(e), "127.0.0.1:51230")

    def test_render_validators(self):
        self.assertEqual(render_validators(["nA", "nB"]), "[validators]\nnA\nnB\n")

    def test_write_config(self):
        ids = validator_identities("val", 2)
        e = NodeEndpoint.for_slot("127.0.0.1", 51200, 1)
        with TemporaryDirectory() as d:
            node_dir = Path(d)
            stale = node_dir / "db" / "old.sqlite"
            stale.parent.mkdir()
            stale.write_text("x")
            cfg = write_config(node_dir, ids[1], e, [i.public_key for i in ids], network_id=21465).read_text()
            validators = (node_dir / "validators.txt").read_text()
            self.assertFalse(stale.exists())
        self.assertIn("port = 51210", cfg)
        self.assertIn("port = 51211", cfg)
        self.assertIn("[network_id]\n21465", cfg)
        self.assertIn(f"[validation_seed]\n{ids[1].seed}", cfg)
        self.assertIn("[peer_private]\n1", cfg)
        for i in ids:
            self.assertIn(i.public_key, validators)


class TestRippledNode(IsolatedAsyncioTestCase):
    def node(self, node_dir=".", endpoint=None, **kwargs) -> RippledNode:
        identity = validator_identities("val", 1)[0]
        return RippledNode(
            identity,
            endpoint or NodeEndpoint.for_slot("127.0.0.1", 51200, 0),
            Path(node_dir),
            validator_public_keys=[identity.public_key],
            **kwargs,
        )

    def with_admin(self, node: RippledNode, handler) -> RippledNode:
        node._http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        node.state = NodeState.READY
        return node

    async def test_operations_need_a_started_node(self):
        n = self.node()
        with self.assertRaises(NodeStateError):
            await n.peer_count()
        with self.assertRaises(NodeStateError):
            await n.submit("00")

    async def test_argv(self):
        n = self.node(quorum=3, rippled_bin="/opt/rippled")
        self.assertEqual(n.argv[0], "/opt/rippled")
        self.assertEqual(n.argv[-2:], ["--quorum", "3"])
        self.assertIn("--start", n.argv)

    async def test_admin_connect_and_peers(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            calls.append(body)
            if body["method"] == "peers":
                peers = [{"address": "127.0.0.1:51220"}, {"address": "127.0.0.1:49152"}]
                return httpx.Response(200, json={"result": {"status": "success", "peers": peers}})
            return httpx.Response(200, json={"result": {"status": "success"}})

        n = self.with_admin(self.node(), handler)
        peer = NodeEndpoint.for_slot("127.0.0.1", 51200, 2)
        await n.connect(peer)
        self.assertEqual(await n.peer_count(), 2)
        self.assertEqual(calls[0], {"method": "connect", "params": [{"ip": "127.0.0.1", "port": 51220}]})
        self.assertEqual(calls[1]["method"], "peers")
        self.assertIs(n.state, NodeState.RUNNING)
        await n.stop()

    async def test_connect_waits_for_handshake(self):
        peers_calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            if json.loads(request.content)["method"] != "peers":
                return httpx.Response(200, json={"result": {"status": "success"}})
            peers_calls.append(1)
            peers = [{"address": "127.0.0.1:51220"}] if len(peers_calls) >= 3 else []
            return httpx.Response(200, json={"result": {"status": "success", "peers": peers}})

        n = self.with_admin(self.node(connect_timeout=5), handler)
        await n.connect(NodeEndpoint.for_slot("127.0.0.1", 51200, 2))
        self.assertEqual(len(peers_calls), 3)
        await n.stop()

    async def test_connect_without_handshake_times_out(self):
        def handler(request: httpx.Request) -> httpx.Response:
            # an inbound link from the same host does not count
            peers = [{"address": "127.0.0.1:49152"}]
            return httpx.Response(200, json={"result": {"status": "success", "peers": peers}})

        n = self.with_admin(self.node(connect_timeout=0.3), handler)
        with self.assertRaises(TimeoutError):
            await n.connect(NodeEndpoint.for_slot("127.0.0.1", 51200, 2))
        await n.stop()

    async def test_admin_error_raises(self):
        def handler(request):
            return httpx.Response(200, json={"result": {"status": "error", "error": "noPermission"}})

        n = self.with_admin(self.node(), handler)
        with self.assertRaises(RpcError) as cm:
            await n.peer_count()
        self.assertEqual(cm.exception.error, "noPermission")
        await n.stop()

    async def test_fee_info(self):
        fee = {
            "status": "success",
            "ledger_current_index": 9,
            "current_ledger_size": "3",
            "expected_ledger_size": "1000",
            "current_queue_size": "42",
            "max_queue_size": "2000",
            "drops": {"open_ledger_fee": "10"},
        }

        n = self.with_admin(self.node(), lambda request: httpx.Response(200, json={"result": fee}))
        info = await n.fee_info()
        self.assertEqual(info.current_queue_size, 42)
        self.assertIn("queue=42/2000", info.summary())
        await n.stop()

    async def test_submit_and_query_use_client(self):
        client = FakeClient(
            ok({"engine_result": "terPRE_SEQ"}),
            err("txnNotFound"),
            ok({"validated": True, "meta": {"TransactionResult": "tesSUCCESS"}}),
        )
        n = self.node(client=client)
        n.state = NodeState.READY
        self.assertEqual((await n.submit("ABCD"))["engine_result"], "terPRE_SEQ")
        self.assertIs(await n.query_finality(TX), FinalityStatus.PENDING)
        self.assertIs(await n.query_finality(TX), FinalityStatus.SUCCESS)
        self.assertEqual(client.requests[0].tx_blob, "ABCD")
        self.assertEqual(client.requests[1].transaction, TX)

    async def test_submit_rpc_error(self):
        n = self.node(client=FakeClient(err("invalidTransaction")))
        n.state = NodeState.READY
        with self.assertRaises(RpcError):
            await n.submit("ABCD")

    async def test_stop_unstarted_node(self):
        n = self.node()
        await n.stop()
        await n.stop()
        self.assertIs(n.state, NodeState.STOPPED)

    async def test_missing_binary_is_start_failure(self):
        with TemporaryDirectory() as d:
            n = self.node(Path(d) / "val0", free_endpoint(), rippled_bin=str(Path(d) / "no-such-rippled"))
            with self.assertRaises(StartFailure):
                await n.start()
            self.assertIs(n.state, NodeState.STOPPED)
            self.assertTrue((Path(d) / "val0" / "rippled.cfg").exists())

    async def test_busy_port_is_start_failure(self):
        with socket.socket() as s:
            s.bind(("127.0.0.1", 0))
            s.listen()
            port = s.getsockname()[1]
            self.assertFalse(port_available("127.0.0.1", port))
            e = free_endpoint()
            n = self.node(endpoint=NodeEndpoint("127.0.0.1", port, e.rpc_port, e.ws_port))
            with self.assertRaises(StartFailure) as cm:
                await n.start()
        self.assertIn(str(port), str(cm.exception))

    async def test_start_twice_is_a_lifecycle_error(self):
        n = self.node()
        n.state = NodeState.STOPPED
        with self.assertRaises(NodeStateError):
            await n.start()
