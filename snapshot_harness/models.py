from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional


class Phase(str, enum.Enum):
    RUNNING = "RUNNING"
    CAPTURING = "CAPTURING"
    STOPPING_1 = "STOPPING_1"
    SNAPSHOTTING = "SNAPSHOTTING"
    STOPPING_2 = "STOPPING_2"
    WIPING = "WIPING"
    RESTORING = "RESTORING"
    VERIFYING = "VERIFYING"
    PASSED = "PASSED"
    FAILED = "FAILED"


class MismatchKind(str, enum.Enum):
    BALANCE = "balance"
    STRING = "string"
    TRANSACTION = "transaction"


@dataclass(frozen=True, slots=True)
class ReferenceSnapshot:
    """Expected post-restore state, captured once by the harness itself."""

    balances: Mapping[str, int]
    strings: Mapping[str, str]

    @staticmethod
    def freeze(balances: Mapping[str, int], strings: Mapping[str, str]) -> "ReferenceSnapshot":
        return ReferenceSnapshot(
            balances=MappingProxyType(dict(balances)),
            strings=MappingProxyType(dict(strings)),
        )

    def to_dict(self) -> Dict[str, Any]:
        # Balances are emitted as decimal strings; they exceed JSON number precision.
        return {
            "balances": {address: str(value) for address, value in self.balances.items()},
            "strings": dict(self.strings),
        }


@dataclass(frozen=True, slots=True)
class Mismatch:
    kind: MismatchKind
    address: str
    expected: Any
    observed: Any

    def describe(self) -> str:
        return (
            f"{self.kind.value} mismatch at {self.address}: "
            f"expected {self.expected!r}, observed {self.observed!r}"
        )


@dataclass(slots=True)
class RunResult:
    """Outcome of one stop → snapshot → wipe → reload → verify cycle."""

    phase: Phase
    seed: Optional[int] = None
    mismatch: Optional[Mismatch] = None
    reference: Optional[ReferenceSnapshot] = None
    accounts: List[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.phase is Phase.PASSED


@dataclass(frozen=True, slots=True)
class ContractArtifact:
    """Compiled contract interface plus creation bytecode."""

    name: str
    abi: List[Dict[str, Any]]
    bytecode: str

    @staticmethod
    def load(directory: Path, name: str) -> "ContractArtifact":
        abi_path = directory / f"{name}.abi"
        bin_path = directory / f"{name}.bin"
        abi = json.loads(abi_path.read_text(encoding="utf-8"))
        bytecode = bin_path.read_text(encoding="utf-8").strip()
        if not bytecode.startswith("0x"):
            bytecode = "0x" + bytecode
        return ContractArtifact(name=name, abi=abi, bytecode=bytecode)
