"""
Throughput benchmark for a local rippled validator mesh.
"""

from .bench import BenchResult, run_benchmark
from .cluster import Cluster, ClusterBuilder
from .config import BenchConfig, load_config

__all__ = ["BenchConfig", "BenchResult", "Cluster", "ClusterBuilder", "load_config", "run_benchmark"]
