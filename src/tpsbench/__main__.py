import argparse
import asyncio
import json
import logging
import sys
import tomllib
from pathlib import Path

from pydantic import ValidationError

from tpsbench.bench import BenchResult, run_benchmark
from tpsbench.config import load_config
from tpsbench.errors import BenchError
from tpsbench.logging_config import setup_logging

log = logging.getLogger("tpsbench")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="tpsbench",
        description="Measure how fast a local rippled validator mesh finalizes a reverse-ordered payment batch.",
    )
    parser.add_argument("-c", "--config", type=Path, help="TOML file overriding the packaged defaults.")
    parser.add_argument("-n", "--num-txns", type=int, help="Number of payments to inject.")
    parser.add_argument("-v", "--num-validators", type=int, help="Number of validators in the mesh.")
    parser.add_argument("-p", "--base-port", type=int, help="First port of the per-node port blocks.")
    parser.add_argument("-t", "--network-dir", type=Path, help="Output dir for node configs, databases and logs.")
    parser.add_argument("--rippled", help="Path to the rippled binary.")
    parser.add_argument("--entry-node", type=int, help="Index of the node that receives every submission.")
    parser.add_argument("--poll-interval", type=float, help="Seconds between finality sweeps.")
    parser.add_argument("--sequential-polls", action="store_true", help="Query nodes one at a time each sweep.")
    parser.add_argument("--memoize", action="store_true", help="Stop re-querying nodes that already confirmed.")
    parser.add_argument("--overall-timeout", type=float, help="Deadline for the whole run in seconds.")
    parser.add_argument("-r", "--report", type=Path, help="Write the result as JSON to this file.")
    return parser.parse_args(argv)


def overrides(a) -> dict:
    o: dict = {}
    net: dict = {}
    poll: dict = {}
    if a.num_txns is not None:
        o["num_txns"] = a.num_txns
    if a.num_validators is not None:
        o["num_validators"] = a.num_validators
    if a.entry_node is not None:
        o["entry_node"] = a.entry_node
    if a.base_port is not None:
        net["base_port"] = a.base_port
    if a.network_dir is not None:
        net["network_dir"] = a.network_dir
    if a.rippled is not None:
        net["rippled_bin"] = a.rippled
    if a.poll_interval is not None:
        poll["interval"] = a.poll_interval
    if a.sequential_polls:
        poll["concurrent"] = False
    if a.memoize:
        poll["memoize_confirmed"] = True
    if a.overall_timeout is not None:
        o["timeout"] = {"overall": a.overall_timeout}
    if a.report is not None:
        o["output"] = {"report": a.report}
    if net:
        o["network"] = net
    if poll:
        o["poll"] = poll
    return o


def print_result(result: BenchResult) -> None:
    print(f"Start at: {result.start_time}")
    print(f"End at: {result.end_time}")
    for name, status in result.confirmations.items():
        print(f"Node {name}: {status}")
    print(f"Elapsed time (ms): {result.elapsed_ms:.0f}")
    print(f"TPS: {result.tps}")


def main(argv=None) -> int:
    args = parse_args(argv)
    try:
        config = load_config(args.config, overrides(args))
    except (ValidationError, OSError, tomllib.TOMLDecodeError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    setup_logging(log_file=config.output.log_file)
    log.info("Benchmarking %s txns on %s validators", config.num_txns, config.num_validators)
    try:
        result = asyncio.run(run_benchmark(config))
    except BenchError as e:
        log.error("Benchmark failed: %s", e.report())
        return 1
    except KeyboardInterrupt:
        log.warning("Interrupted")
        return 130

    print_result(result)
    if config.output.report is not None:
        config.output.report.write_text(json.dumps(result.to_dict(), indent=2))
        log.info("Wrote report to %s", config.output.report)
    return 0


if __name__ == "__main__":
    sys.exit(main())
