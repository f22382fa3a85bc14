import shutil
from dataclasses import dataclass
from pathlib import Path

from mako.template import Template

import tpsbench.constants as C
from tpsbench.identity import ValidatorIdentity

template_dir = Path(__file__).parent / "templates"
node_config_template = template_dir / "rippled.cfg.mako"
node_config_file = "rippled.cfg"
validators_file = "validators.txt"


@dataclass(frozen=True, slots=True)
class NodeEndpoint:
    host: str
    peer_port: int
    rpc_port: int
    ws_port: int

    @classmethod
    def for_slot(cls, host: str, base_port: int, index: int) -> "NodeEndpoint":
        base = base_port + index * C.PORT_STRIDE
        return cls(
            host=host,
            peer_port=base + C.PEER_PORT_OFFSET,
            rpc_port=base + C.RPC_PORT_OFFSET,
            ws_port=base + C.WS_PORT_OFFSET,
        )

    @property
    def rpc_url(self) -> str:
        return f"http://{self.host}:{self.rpc_port}"

    @property
    def ports(self) -> tuple[int, int, int]:
        return self.peer_port, self.rpc_port, self.ws_port

    def __str__(self) -> str:
        return f"{self.host}:{self.peer_port}"


def render_validators(public_keys: list[str]) -> str:
    return "\n".join(["[validators]", *public_keys, ""])


def write_config(
    node_dir: Path,
    identity: ValidatorIdentity,
    endpoint: NodeEndpoint,
    validator_public_keys: list[str],
    *,
    network_id: int,
) -> Path:
    """Render a fresh rippled.cfg (and its validators list) into `node_dir`.

    Any database left behind by a previous run is removed so every run starts
    from the genesis ledger.
    """
    db_path = node_dir / "db"
    if db_path.exists():
        shutil.rmtree(db_path)
    db_path.mkdir(parents=True, exist_ok=True)

    (node_dir / validators_file).write_text(render_validators(validator_public_keys))

    node_config_data = {
        "host": endpoint.host,
        "peer_port": endpoint.peer_port,
        "rpc_port": endpoint.rpc_port,
        "ws_port": endpoint.ws_port,
        "peers_max": max(len(validator_public_keys) * 2, 10),
        "network_id": network_id,
        "db_path": db_path.resolve(),
        "debug_log": (node_dir / "debug.log").resolve(),
        "validation_seed": identity.seed,
        "validators_file": validators_file,
    }
    config_template = Template(filename=str(node_config_template))
    config_file = node_dir / node_config_file
    config_file.write_text(config_template.render(**node_config_data))
    return config_file
