import os
import tomllib
from pathlib import Path

from pydantic import (
    BaseModel,
    NonNegativeInt,
    PositiveFloat,
    PositiveInt,
    model_validator,
)

import tpsbench.constants as C

pkg_root = Path(__file__).parent
config_file = pkg_root / "config.toml"

# env var -> dotted config key
ENV_OVERRIDES = {
    "NUM_TXNS": "num_txns",
    "NUM_VALIDATORS": "num_validators",
    "BASE_PORT": "network.base_port",
    "RIPPLED_BIN": "network.rippled_bin",
}


class NetworkConfig(BaseModel):
    rippled_bin: str = "rippled"
    network_dir: Path = Path("testnet")
    host: str = "127.0.0.1"
    base_port: PositiveInt = 51200
    network_id: NonNegativeInt = 21465
    quorum: PositiveInt | None = None
    validator_name: str = "val"
    validator_seeds: list[str] | None = None


class FundingConfig(BaseModel):
    seed: str = C.GENESIS["seed"]
    first_sequence: PositiveInt = 1  # genesis account Sequence on a fresh ledger


class TransactionConfig(BaseModel):
    amount: str = C.DEFAULT_AMOUNT  # drops
    fee: str = C.DEFAULT_FEE


class PollConfig(BaseModel):
    interval: PositiveFloat = 0.5
    concurrent: bool = True
    memoize_confirmed: bool = False


class TimeoutConfig(BaseModel):
    rpc: PositiveFloat = C.RPC_TIMEOUT
    startup: PositiveFloat = 30.0
    connect: PositiveFloat = 10.0
    readiness: PositiveFloat = 120.0
    convergence: PositiveFloat = 900.0
    stop: PositiveFloat = 10.0
    overall: PositiveFloat | None = None


class OutputConfig(BaseModel):
    log_file: str | None = "/tmp/tpsbench.log"
    report: Path | None = None


class BenchConfig(BaseModel):
    num_txns: PositiveInt = C.DEFAULT_NUM_TXNS
    num_validators: PositiveInt = 4
    entry_node: NonNegativeInt = 0
    network: NetworkConfig = NetworkConfig()
    funding_account: FundingConfig = FundingConfig()
    transaction: TransactionConfig = TransactionConfig()
    poll: PollConfig = PollConfig()
    timeout: TimeoutConfig = TimeoutConfig()
    output: OutputConfig = OutputConfig()

    @model_validator(mode="after")
    def _check_topology(self) -> "BenchConfig":
        if self.entry_node >= self.num_validators:
            raise ValueError(f"entry_node {self.entry_node} is not one of {self.num_validators} validators")
        seeds = self.network.validator_seeds
        if seeds is not None:
            if len(seeds) < self.num_validators:
                raise ValueError(f"{len(seeds)} validator seeds given for {self.num_validators} validators")
            if len(set(seeds)) != len(seeds):
                raise ValueError("validator seeds must be unique")
        if self.network.quorum is not None and self.network.quorum > self.num_validators:
            raise ValueError("quorum cannot exceed the number of validators")
        return self


def deep_update(base: dict, override: dict) -> dict:
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(base.get(k), dict):
            deep_update(base[k], v)
        else:
            base[k] = v
    return base


def _set_dotted(d: dict, dotted: str, value) -> None:
    *parents, leaf = dotted.split(".")
    for p in parents:
        d = d.setdefault(p, {})
    d[leaf] = value


def env_overrides(environ=os.environ) -> dict:
    o: dict = {}
    for var, key in ENV_OVERRIDES.items():
        if (value := environ.get(var)) is not None:
            _set_dotted(o, key, value)
    return o


def load_config(path: Path | None = None, overrides: dict | None = None, environ=os.environ) -> BenchConfig:
    """Layer packaged defaults, a user file, the environment and explicit overrides.

    Later layers win. Values from the environment arrive as strings and are
    coerced by the model.
    """
    cfg = tomllib.loads(config_file.read_text())
    if path is not None:
        deep_update(cfg, tomllib.loads(Path(path).read_text()))
    deep_update(cfg, env_overrides(environ))
    if overrides:
        deep_update(cfg, overrides)
    return BenchConfig.model_validate(cfg)
