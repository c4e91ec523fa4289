from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from .errors import ConfigError
from .models import ContractArtifact

STRING_STORAGE = "StringStorage"
DEPLOY_ANOTHER_CONTRACT = "DeployAnotherContract"


@dataclass(frozen=True)
class NodeConfig:
    binary: str = "../../build/opera"
    args: Tuple[str, ...] = ("--nousb", "--fakenet", "1/1")
    datadir: str = "snapshot-test-data"
    ipc_name: str = "opera.ipc"
    log_dir: str = "node-logs"
    poll_interval: float = 1.0

    @property
    def ipc_path(self) -> Path:
        return Path(self.datadir) / self.ipc_name


@dataclass(frozen=True)
class SnapshotConfig:
    path: str = "snapshot-test-file"
    dwell: float = 30.0


@dataclass(frozen=True)
class WorkloadConfig:
    rounds: int = 30
    iterations: int = 20
    transfer_threshold_ether: int = 1
    block_delay: float = 1.5
    seed: Optional[int] = None


@dataclass(frozen=True)
class RpcConfig:
    startup_grace: float = 15.0
    receipt_timeout: float = 600.0
    faucet_password: str = "fakepassword"
    funding_poll: float = 1.0


@dataclass(frozen=True)
class ContractsConfig:
    dir: str = "contracts"


@dataclass(frozen=True)
class HarnessConfig:
    node: NodeConfig = field(default_factory=NodeConfig)
    snapshot: SnapshotConfig = field(default_factory=SnapshotConfig)
    workload: WorkloadConfig = field(default_factory=WorkloadConfig)
    rpc: RpcConfig = field(default_factory=RpcConfig)
    contracts: ContractsConfig = field(default_factory=ContractsConfig)
    tx_check: bool = True


SECTIONS: Dict[str, type] = {
    "node": NodeConfig,
    "snapshot": SnapshotConfig,
    "workload": WorkloadConfig,
    "rpc": RpcConfig,
    "contracts": ContractsConfig,
}


def _build_section(name: str, cls: type, values: Mapping[str, Any]):
    known = {f.name for f in dataclasses.fields(cls)}
    unknown = set(values) - known
    if unknown:
        raise ConfigError(f"Unknown keys in '{name}' section: {', '.join(sorted(unknown))}")
    kwargs = dict(values)
    if "args" in kwargs and kwargs["args"] is not None:
        kwargs["args"] = tuple(str(arg) for arg in kwargs["args"])
    return cls(**kwargs)


def load_config(
    path: Optional[Path] = None,
    overrides: Optional[Mapping[str, Mapping[str, Any]]] = None,
) -> HarnessConfig:
    """
    Read a YAML config file and apply command line overrides on top.

    Override values of ``None`` are ignored so unset argparse flags fall
    through to the file (or to the built-in defaults).
    """
    raw: Dict[str, Any] = {}
    if path is not None:
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except OSError as exc:
            raise ConfigError(f"Unable to read config {path}: {exc}") from exc
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigError(f"Config {path} must be a mapping at the top level")

    unknown = set(raw) - set(SECTIONS) - {"tx_check"}
    if unknown:
        raise ConfigError(f"Unknown config sections: {', '.join(sorted(unknown))}")

    merged: Dict[str, Dict[str, Any]] = {}
    for name in SECTIONS:
        section = raw.get(name) or {}
        if not isinstance(section, dict):
            raise ConfigError(f"Config section '{name}' must be a mapping")
        merged[name] = dict(section)

    tx_check = bool(raw.get("tx_check", True))
    for name, values in (overrides or {}).items():
        if name == "tx_check":
            if values is not None:
                tx_check = bool(values)
            continue
        if name not in merged:
            raise ConfigError(f"Unknown override section: {name}")
        for key, value in values.items():
            if value is not None:
                merged[name][key] = value

    sections = {
        name: _build_section(name, cls, merged[name]) for name, cls in SECTIONS.items()
    }
    return HarnessConfig(tx_check=tx_check, **sections)


def load_contracts(config: ContractsConfig) -> Dict[str, ContractArtifact]:
    directory = Path(config.dir)
    artifacts: Dict[str, ContractArtifact] = {}
    for name in (STRING_STORAGE, DEPLOY_ANOTHER_CONTRACT):
        try:
            artifacts[name] = ContractArtifact.load(directory, name)
        except OSError as exc:
            raise ConfigError(f"Missing contract artifact for {name} in {directory}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Invalid ABI for {name} in {directory}: {exc}") from exc
    return artifacts
