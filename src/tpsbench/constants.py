from typing import Final
from enum import StrEnum

# Genesis account of a fresh `rippled --start` ledger ("masterpassphrase").
genesis_account: Final = {
    "address": "rHb9CJAWyB4rj91VRWn96DkukG4bwdtyTh",
    "seed": "snoPBrXtMeMyMHUVTgbuqAfg1SUTb",
}

GENESIS = genesis_account


class NodeState(StrEnum):
    CREATED  = "CREATED"
    STARTING = "STARTING"
    READY    = "READY"
    RUNNING  = "RUNNING"
    STOPPED  = "STOPPED"


class FinalityStatus(StrEnum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED  = "FAILED"


class Stage(StrEnum):
    BUILD     = "build"
    READINESS = "readiness"
    GENERATE  = "generate"
    INJECT    = "inject"
    POLL      = "poll"
    TEARDOWN  = "teardown"


# Engine result prefixes that mean the entry node refused the blob outright.
# ter* (notably terPRE_SEQ for out-of-order arrivals) is held and retried by rippled.
FATAL_ENGINE_PREFIXES: Final = ("tem", "tef", "tel")

# Each node owns a block of ports: peer, rpc admin, ws admin.
PORT_STRIDE = 10
PEER_PORT_OFFSET = 0
RPC_PORT_OFFSET = 1
WS_PORT_OFFSET = 2

# NetworkID must be present on transactions for networks above this id.
NETWORK_ID_FIELD_THRESHOLD = 1024

DEFAULT_NUM_TXNS = 10_000
DEFAULT_AMOUNT = str(int(100 * 1e6))  # drops, enough to fund a fresh account
DEFAULT_FEE = "10"
RPC_TIMEOUT = 2.0
SUBMIT_TIMEOUT = 20

__all__ = [
    "DEFAULT_AMOUNT",
    "DEFAULT_FEE",
    "DEFAULT_NUM_TXNS",
    "FATAL_ENGINE_PREFIXES",
    "GENESIS",
    "NETWORK_ID_FIELD_THRESHOLD",
    "PEER_PORT_OFFSET",
    "PORT_STRIDE",
    "RPC_PORT_OFFSET",
    "RPC_TIMEOUT",
    "SUBMIT_TIMEOUT",
    "WS_PORT_OFFSET",

    ######
    "FinalityStatus",
    "NodeState",
    "Stage",
]
