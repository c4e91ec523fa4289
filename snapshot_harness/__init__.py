"""
Snapshot round-trip harness for a single-validator ledger node.

A randomized workload mutates node state, the harness captures what it
expects, then the node is stopped, snapshotted to a file, wiped, reloaded
from that file and checked for an exact match.
"""

from . import config, coordinator, gateway, oracle, process, report, system, timing, workload
from .errors import ConfigError, HarnessError, OracleError, ProcessError, RpcError
from .models import ContractArtifact, Mismatch, MismatchKind, Phase, ReferenceSnapshot, RunResult

__all__ = [
    "config",
    "coordinator",
    "gateway",
    "oracle",
    "process",
    "report",
    "system",
    "timing",
    "workload",
    "ConfigError",
    "ContractArtifact",
    "HarnessError",
    "Mismatch",
    "MismatchKind",
    "OracleError",
    "Phase",
    "ProcessError",
    "ReferenceSnapshot",
    "RpcError",
    "RunResult",
]
