import shutil
from dataclasses import replace
from pathlib import Path

import pytest

from fakes import COINBASE, FakeGateway, FakeLedger
from snapshot_harness.coordinator import SnapshotCoordinator
from snapshot_harness.errors import ProcessError, RpcError
from snapshot_harness.models import MismatchKind, Phase, ReferenceSnapshot


def make_coordinator(config, contracts, cluster, seed=5, gateway_factory=None):
    return SnapshotCoordinator(
        config,
        contracts,
        seed=seed,
        gateway_factory=gateway_factory or cluster.gateway_factory,
        process_factory=cluster.process_factory,
    )


def with_rounds(config, rounds, iterations=None):
    workload = replace(config.workload, rounds=rounds)
    if iterations is not None:
        workload = replace(workload, iterations=iterations)
    return replace(config, workload=workload)


class TestLifecycle:
    def test_full_cycle_passes(self, harness_config, contracts, cluster):
        coordinator = make_coordinator(harness_config, contracts, cluster)
        result = coordinator.run()

        assert result.passed
        assert result.phase is Phase.PASSED
        assert result.mismatch is None
        assert result.seed == 5
        assert coordinator.phase is Phase.PASSED
        # Node is down once the run is over.
        assert cluster.ledger is None

    def test_launch_sequence(self, harness_config, contracts, cluster):
        make_coordinator(harness_config, contracts, cluster).run()
        snapshot = harness_config.snapshot.path
        datadir = harness_config.node.datadir

        assert len(cluster.launches) == 3
        for command in cluster.launches:
            assert command[0] == "opera"
            assert command[command.index("--datadir") + 1] == datadir
            assert "--fakenet" in command
        assert cluster.launches[0][-2:] == ["--datadir", datadir]
        assert cluster.launches[1][-2:] == ["--save-snapshot", snapshot]
        assert cluster.launches[2][-2:] == ["--load-snapshot", snapshot]

    def test_datadir_wiped_before_restore(self, harness_config, contracts, cluster):
        state_file = Path(harness_config.node.datadir) / "ledger.json"
        seen = []
        cluster.corrupt_on_load = lambda ledger: seen.append(state_file.exists())
        assert make_coordinator(harness_config, contracts, cluster).run().passed
        assert seen == [False]

    def test_stale_datadir_removed_before_first_launch(self, harness_config, contracts, cluster):
        datadir = Path(harness_config.node.datadir)
        datadir.mkdir(parents=True)
        stale = FakeLedger()
        stale.balances[COINBASE] = 0
        stale.dump(datadir / "ledger.json")

        assert make_coordinator(harness_config, contracts, cluster).run().passed

    def test_stale_snapshot_removed_before_save(self, harness_config, contracts, cluster):
        snapshot = Path(harness_config.snapshot.path)
        FakeLedger().dump(snapshot)
        seen = []

        def process_factory(command, log_path, poll_interval):
            seen.append(snapshot.exists())
            return cluster.process_factory(command, log_path, poll_interval)

        coordinator = SnapshotCoordinator(
            harness_config,
            contracts,
            seed=5,
            gateway_factory=cluster.gateway_factory,
            process_factory=process_factory,
        )
        assert coordinator.run().passed
        # Absent at the first and the snapshotting launch, written by the save.
        assert seen == [False, False, True]

    def test_noop_workload_passes(self, harness_config, contracts, cluster):
        config = with_rounds(harness_config, 0)
        coordinator = make_coordinator(config, contracts, cluster)
        result = coordinator.run()
        assert result.passed
        assert result.reference.strings == {}
        assert result.accounts == [COINBASE, coordinator.root_account]

    def test_reference_covers_coinbase_and_generated_accounts(self, harness_config, contracts, cluster):
        result = make_coordinator(harness_config, contracts, cluster).run()
        assert result.accounts[0] == COINBASE
        assert len(result.accounts) == harness_config.workload.rounds + 2
        assert set(result.reference.balances) == set(result.accounts)


class TestVerification:
    def test_balance_mismatch_fails_fast(self, harness_config, contracts, cluster):
        def corrupt(ledger):
            ledger.balances[COINBASE] += 1

        cluster.corrupt_on_load = corrupt
        result = make_coordinator(harness_config, contracts, cluster).run()

        assert not result.passed
        assert result.phase is Phase.FAILED
        assert result.mismatch.kind is MismatchKind.BALANCE
        assert result.mismatch.address == COINBASE
        assert result.mismatch.observed == result.mismatch.expected + 1
        assert cluster.ledger is None

    def test_string_mismatch(self, harness_config, contracts, cluster):
        def corrupt(ledger):
            for address in ledger.strings:
                ledger.strings[address] += "!"

        cluster.corrupt_on_load = corrupt
        config = with_rounds(harness_config, 30, iterations=2)
        result = make_coordinator(config, contracts, cluster, seed=11).run()

        assert result.reference.strings
        assert result.mismatch.kind is MismatchKind.STRING
        address = result.mismatch.address
        assert result.mismatch.expected == result.reference.strings[address]
        assert result.mismatch.observed == result.reference.strings[address] + "!"

    def test_contract_without_code_after_restore(self, harness_config, contracts, cluster):
        cluster.missing_code_after_restore = True
        config = with_rounds(harness_config, 30, iterations=2)
        result = make_coordinator(config, contracts, cluster, seed=11).run()

        assert result.phase is Phase.FAILED
        assert result.mismatch.kind is MismatchKind.STRING
        address = result.mismatch.address
        assert address in result.reference.strings
        assert result.mismatch.expected == result.reference.strings[address]
        assert "no contract code" in result.mismatch.observed
        assert cluster.ledger is None

    def test_post_restore_transaction_failure(self, harness_config, contracts, cluster):
        cluster.reject_sends_after_restore = True
        coordinator = make_coordinator(harness_config, contracts, cluster)
        result = coordinator.run()
        assert result.mismatch.kind is MismatchKind.TRANSACTION
        assert result.mismatch.address == coordinator.root_account

    def test_post_restore_transaction_check_can_be_disabled(self, harness_config, contracts, cluster):
        cluster.reject_sends_after_restore = True
        config = replace(harness_config, tx_check=False)
        assert make_coordinator(config, contracts, cluster).run().passed

    def test_example_scenario(self, harness_config, contracts):
        ledger = FakeLedger()
        ledger.balances["0xaa"] = 500000000000000000
        ledger.strings["0xcc"] = "abc123"
        gateway = FakeGateway(ledger)
        reference = ReferenceSnapshot.freeze({"0xaa": 500000000000000000}, {"0xcc": "abc123"})
        coordinator = SnapshotCoordinator(harness_config, contracts, seed=1)

        assert coordinator.verify(gateway, reference) is None

        ledger.strings["0xcc"] = "abc124"
        mismatch = coordinator.verify(gateway, reference)
        assert mismatch.kind is MismatchKind.STRING
        assert mismatch.address == "0xcc"
        assert mismatch.expected == "abc123"


class TestAbort:
    def test_rpc_error_carries_phase(self, harness_config, contracts, cluster):
        def factory(config, previous):
            if previous is not None:
                raise RpcError("connect", "no node listening")
            return cluster.gateway_factory(config, previous)

        coordinator = make_coordinator(harness_config, contracts, cluster, gateway_factory=factory)
        with pytest.raises(RpcError) as excinfo:
            coordinator.run()

        assert excinfo.value.phase == Phase.RESTORING.value
        assert "RESTORING" in str(excinfo.value)
        assert coordinator.node is None
        assert cluster.ledger is None

    def test_wipe_failure_carries_phase(self, harness_config, contracts, cluster, monkeypatch):
        real_rmtree = shutil.rmtree

        def rmtree(path, ignore_errors=False):
            if not ignore_errors:
                raise PermissionError(13, "Permission denied", str(path))
            real_rmtree(path, ignore_errors=True)

        monkeypatch.setattr("snapshot_harness.coordinator.shutil.rmtree", rmtree)
        coordinator = make_coordinator(harness_config, contracts, cluster)
        with pytest.raises(ProcessError, match="Unable to wipe data directory") as excinfo:
            coordinator.run()

        assert excinfo.value.phase == Phase.WIPING.value
        assert coordinator.node is None

    def test_unexpected_exception_kills_node(self, harness_config, contracts, cluster):
        def factory(config, previous):
            raise KeyboardInterrupt

        coordinator = make_coordinator(harness_config, contracts, cluster, gateway_factory=factory)
        with pytest.raises(KeyboardInterrupt):
            coordinator.run()
        assert cluster.ledger is None

    def test_random_seed_when_unset(self, harness_config, contracts):
        coordinator = SnapshotCoordinator(harness_config, contracts)
        assert isinstance(coordinator.seed, int)
