from __future__ import annotations

import logging
import random
import shutil
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from web3 import Web3

from .config import STRING_STORAGE, HarnessConfig
from .errors import HarnessError, ProcessError, RpcError
from .gateway import RpcGateway, Web3Gateway
from .models import ContractArtifact, Mismatch, MismatchKind, Phase, ReferenceSnapshot, RunResult
from .oracle import StateOracle
from .process import ProcessController
from .timing import settle
from .workload import WorkloadEngine, bootstrap_root_account

logger = logging.getLogger(__name__)

GatewayFactory = Callable[[HarnessConfig, Optional[RpcGateway]], RpcGateway]
ProcessFactory = Callable[[Sequence[str], Optional[Path], float], ProcessController]

TX_CHECK_AMOUNT = Web3.to_wei(1, "gwei")


def connect_web3(config: HarnessConfig, previous: Optional[RpcGateway]) -> RpcGateway:
    keys = previous.keys if isinstance(previous, Web3Gateway) else None
    return Web3Gateway.connect(
        config.node.ipc_path,
        startup_grace=config.rpc.startup_grace,
        faucet_password=config.rpc.faucet_password,
        receipt_timeout=config.rpc.receipt_timeout,
        keys=keys,
    )


class SnapshotCoordinator:
    """
    Runs the workload, then stop → save snapshot → wipe → load snapshot →
    verify against the reference captured before the first stop.

    Phases are strictly sequential; the node is fully stopped before the next
    launch. Any ``HarnessError`` is stamped with the phase it happened in and
    re-raised after the node is killed.
    """

    def __init__(
        self,
        config: HarnessConfig,
        contracts: Dict[str, ContractArtifact],
        seed: Optional[int] = None,
        gateway_factory: GatewayFactory = connect_web3,
        process_factory: ProcessFactory = ProcessController,
    ):
        self.config = config
        self.contracts = contracts
        self.seed = seed if seed is not None else random.SystemRandom().randrange(2 ** 32)
        self.gateway_factory = gateway_factory
        self.process_factory = process_factory
        self.phase = Phase.RUNNING
        self.oracle = StateOracle()
        self.node: Optional[ProcessController] = None
        self.gateway: Optional[RpcGateway] = None
        self.root_account: Optional[str] = None
        self.accounts: List[str] = []

    @property
    def datadir(self) -> Path:
        return Path(self.config.node.datadir)

    @property
    def snapshot_file(self) -> str:
        return self.config.snapshot.path

    def run(self) -> RunResult:
        logger.info("Starting snapshot test with seed %d", self.seed)
        try:
            result = self._run()
        except HarnessError as exc:
            if exc.phase is None:
                exc.phase = self.phase.value
            logger.error("Run aborted: %s", exc)
            self.abort()
            raise
        except BaseException:
            self.abort()
            raise
        self._stop_node()
        return result

    def _run(self) -> RunResult:
        self._enter(Phase.RUNNING)
        shutil.rmtree(self.datadir, ignore_errors=True)
        self._remove_stale_snapshot()
        self._launch("running")
        self.gateway = self.gateway_factory(self.config, None)
        coinbase, self.root_account = bootstrap_root_account(
            self.gateway,
            funding_poll=self.config.rpc.funding_poll,
            block_delay=self.config.workload.block_delay,
        )
        engine = WorkloadEngine(
            self.gateway,
            self.oracle,
            self.contracts,
            self.root_account,
            self.config.workload,
            random.Random(self.seed),
        )
        engine.run()
        self.accounts = [coinbase] + engine.accounts

        self._enter(Phase.CAPTURING)
        reference = self.oracle.capture_balances(self.accounts, self.gateway)

        self._enter(Phase.STOPPING_1)
        self._stop_node()

        self._enter(Phase.SNAPSHOTTING)
        self._launch("snapshot", "--save-snapshot", self.snapshot_file)
        settle(self.config.snapshot.dwell, "snapshot write")

        self._enter(Phase.STOPPING_2)
        self._stop_node()

        self._enter(Phase.WIPING)
        try:
            shutil.rmtree(self.datadir)
        except OSError as exc:
            raise ProcessError(f"Unable to wipe data directory {self.datadir}: {exc}") from exc
        logger.info("Removed data directory %s", self.datadir)

        self._enter(Phase.RESTORING)
        self._launch("restore", "--load-snapshot", self.snapshot_file)
        self.gateway = self.gateway_factory(self.config, self.gateway)

        self._enter(Phase.VERIFYING)
        mismatch = self.verify(self.gateway, reference)
        if mismatch is None and self.config.tx_check:
            mismatch = self.check_new_transaction(self.gateway)

        result = RunResult(
            phase=Phase.PASSED,
            seed=self.seed,
            reference=reference,
            accounts=list(self.accounts),
        )
        if mismatch is not None:
            result.phase = Phase.FAILED
            result.mismatch = mismatch
            self._enter(Phase.FAILED)
            logger.error("Verification failed: %s", mismatch.describe())
        else:
            self._enter(Phase.PASSED)
            logger.info("Test passed.")
        return result

    def verify(self, gateway: RpcGateway, reference: ReferenceSnapshot) -> Optional[Mismatch]:
        """Return the first difference between the node and the reference, if any."""
        for address, expected in reference.balances.items():
            observed = gateway.get_balance(address)
            if observed != expected:
                return Mismatch(MismatchKind.BALANCE, address, expected, observed)
        artifact = self.contracts[STRING_STORAGE]
        for address, expected in reference.strings.items():
            try:
                observed = gateway.call_contract(artifact, address, "getString")
            except RpcError as exc:
                # A contract whose code was not restored cannot answer the read.
                return Mismatch(MismatchKind.STRING, address, expected, exc.detail)
            if observed != expected:
                return Mismatch(MismatchKind.STRING, address, expected, observed)
        logger.info(
            "Verified %d balances and %d strings",
            len(reference.balances),
            len(reference.strings),
        )
        return None

    def check_new_transaction(self, gateway: RpcGateway) -> Optional[Mismatch]:
        """
        Submit one transfer from the root account on the restored node.

        The snapshot may reset account nonces, so a previously used account
        must still be able to get a transaction mined.
        """
        sender = self.root_account
        recipient = self.accounts[0]
        try:
            gateway.send_value(sender, recipient, TX_CHECK_AMOUNT)
        except RpcError as exc:
            return Mismatch(MismatchKind.TRANSACTION, sender, "mined", exc.detail)
        logger.info("Post-restore transaction from %s mined", sender)
        return None

    def abort(self) -> None:
        if self.node is not None:
            self.node.kill()
            self.node = None

    def _remove_stale_snapshot(self) -> None:
        # A leftover file would be loaded if the new save never completed.
        try:
            Path(self.snapshot_file).unlink(missing_ok=True)
        except OSError as exc:
            raise ProcessError(f"Unable to remove stale snapshot {self.snapshot_file}: {exc}") from exc

    def _enter(self, phase: Phase) -> None:
        self.phase = phase
        logger.info("Phase %s", phase.value)

    def _launch(self, label: str, *extra: str) -> None:
        node = self.config.node
        command = [node.binary, *node.args, "--datadir", node.datadir, *extra]
        log_path = Path(node.log_dir) / f"node-{label}.log" if node.log_dir else None
        self.node = self.process_factory(command, log_path, node.poll_interval)
        self.node.start()

    def _stop_node(self) -> None:
        if self.node is None:
            return
        self.node.stop()
        self.node = None
