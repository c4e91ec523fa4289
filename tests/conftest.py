from typing import Dict

import pytest

from fakes import FakeCluster, FakeGateway, FakeLedger
from snapshot_harness.config import (
    DEPLOY_ANOTHER_CONTRACT,
    STRING_STORAGE,
    HarnessConfig,
    NodeConfig,
    RpcConfig,
    SnapshotConfig,
    WorkloadConfig,
)
from snapshot_harness.models import ContractArtifact


@pytest.fixture
def contracts() -> Dict[str, ContractArtifact]:
    return {
        STRING_STORAGE: ContractArtifact(STRING_STORAGE, [], "0x00"),
        DEPLOY_ANOTHER_CONTRACT: ContractArtifact(DEPLOY_ANOTHER_CONTRACT, [], "0x00"),
    }


@pytest.fixture
def workload_config() -> WorkloadConfig:
    return WorkloadConfig(rounds=4, iterations=5, transfer_threshold_ether=1, block_delay=0)


@pytest.fixture
def harness_config(tmp_path, workload_config) -> HarnessConfig:
    return HarnessConfig(
        node=NodeConfig(binary="opera", datadir=str(tmp_path / "data"), log_dir="", poll_interval=0),
        snapshot=SnapshotConfig(path=str(tmp_path / "snapshot-file"), dwell=0),
        workload=workload_config,
        rpc=RpcConfig(startup_grace=0, funding_poll=0),
    )


@pytest.fixture
def cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def funded_gateway() -> FakeGateway:
    ledger = FakeLedger()
    return FakeGateway(ledger)


