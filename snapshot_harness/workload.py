from __future__ import annotations

import logging
import random
import string
import time
from dataclasses import dataclass
from typing import Dict, List, Tuple

from web3 import Web3

from .config import DEPLOY_ANOTHER_CONTRACT, STRING_STORAGE, WorkloadConfig
from .errors import RpcError
from .gateway import RpcGateway
from .models import ContractArtifact
from .oracle import StateOracle
from .timing import settle

logger = logging.getLogger(__name__)

STRING_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits
MAX_STRING_LENGTH = 95

DEPLOY_STRING_GAS = 500_000
DEPLOY_DAC_GAS = 1_000_000
NESTED_DEPLOY_GAS = 800_000
SET_STRING_GAS = 300_000


def random_string(rng: random.Random) -> str:
    length = rng.randrange(0, MAX_STRING_LENGTH + 1)
    return "".join(rng.choice(STRING_ALPHABET) for _ in range(length))


def bootstrap_root_account(
    gateway: RpcGateway, funding_poll: float = 1.0, block_delay: float = 1.5
) -> Tuple[str, str]:
    """
    Create the root account and fund it with half of the coinbase balance.

    Returns ``(coinbase, root)``. Blocks until the node has credited its
    coinbase, which on a fresh fakenet takes a few blocks.
    """
    root = gateway.new_account()
    coinbase = gateway.node_accounts()[0]
    balance = gateway.get_balance(coinbase)
    while balance == 0:
        time.sleep(funding_poll)
        balance = gateway.get_balance(coinbase)
    gateway.fund_from_faucet(coinbase, root, balance // 2)
    logger.info("Funded root account %s with %d wei from %s", root, balance // 2, coinbase)
    settle(block_delay, "block production")
    return coinbase, root


@dataclass(slots=True)
class WorkloadStats:
    rounds: int = 0
    transfers: int = 0
    skipped_transfers: int = 0
    faucet_transfers: int = 0
    string_deployments: int = 0
    nested_deployments: int = 0
    string_updates: int = 0


class WorkloadEngine:
    """Randomized transfers and contract writes, mirrored into a ``StateOracle``."""

    def __init__(
        self,
        gateway: RpcGateway,
        oracle: StateOracle,
        contracts: Dict[str, ContractArtifact],
        root_account: str,
        config: WorkloadConfig,
        rng: random.Random,
    ):
        self.gateway = gateway
        self.oracle = oracle
        self.contracts = contracts
        self.root_account = root_account
        self.config = config
        self.rng = rng
        self.accounts: List[str] = [root_account]
        self.stats = WorkloadStats()
        self.threshold = Web3.to_wei(config.transfer_threshold_ether, "ether")

    def run(self) -> WorkloadStats:
        for index in range(self.config.rounds):
            self.run_round(index)
        logger.info("Workload finished: %s", self.stats)
        return self.stats

    def run_round(self, index: int) -> None:
        logger.info("Round %d/%d", index + 1, self.config.rounds)
        self.accounts.append(self.gateway.new_account())

        for _ in range(self.config.iterations):
            selected = self.accounts[self.rng.randrange(len(self.accounts))]
            if self.rng.randrange(2) == 0:
                self.transfer_if_funded(selected)
            if self.rng.randrange(4) == 0:
                amount = Web3.to_wei(self.rng.randrange(1, 5), "ether")
                logger.debug("Faucet transfer %d wei to %s", amount, selected)
                self.gateway.send_value(self.root_account, selected, amount)
                self.stats.faucet_transfers += 1

        if self.rng.randrange(4) == 0:
            self.deploy_string_storage()
        if self.rng.randrange(8) == 0:
            self.deploy_nested_string_storage()
        self.update_strings()

        settle(self.config.block_delay, "block production")
        self.stats.rounds += 1

    def transfer_if_funded(self, sender: str) -> bool:
        # Live query: fees make any mirrored balance drift.
        balance = self.gateway.get_balance(sender)
        if balance <= self.threshold:
            self.stats.skipped_transfers += 1
            return False
        recipient = self.accounts[self.rng.randrange(len(self.accounts))]
        amount = Web3.to_wei(f"0.{self.rng.randrange(1, 98)}", "ether")
        logger.debug("Transfer %d wei %s -> %s", amount, sender, recipient)
        self.gateway.send_value(sender, recipient, amount)
        self.stats.transfers += 1
        return True

    def deploy_string_storage(self) -> str:
        value = random_string(self.rng)
        outcome = self.gateway.deploy_contract(
            self.contracts[STRING_STORAGE], self.root_account, [value], DEPLOY_STRING_GAS
        )
        if not outcome.contract_address:
            raise RpcError(f"deploy {STRING_STORAGE}", "receipt has no contract address")
        self.oracle.record_string(outcome.contract_address, value)
        self.stats.string_deployments += 1
        logger.info("Deployed %s at %s", STRING_STORAGE, outcome.contract_address)
        return outcome.contract_address

    def deploy_nested_string_storage(self) -> str:
        artifact = self.contracts[DEPLOY_ANOTHER_CONTRACT]
        deployed = self.gateway.deploy_contract(artifact, self.root_account, [], DEPLOY_DAC_GAS)
        if not deployed.contract_address:
            raise RpcError(f"deploy {DEPLOY_ANOTHER_CONTRACT}", "receipt has no contract address")

        value = random_string(self.rng)
        outcome = self.gateway.transact(
            artifact, deployed.contract_address, "deploy", [value], self.root_account, NESTED_DEPLOY_GAS
        )
        emitted = outcome.events.get("NewString") or []
        if not emitted:
            raise RpcError(f"{DEPLOY_ANOTHER_CONTRACT}.deploy", "no NewString event emitted")
        nested = emitted[0]["another"]
        self.oracle.record_string(nested, value)
        self.stats.nested_deployments += 1
        logger.info("Deployed nested %s at %s via %s", STRING_STORAGE, nested, deployed.contract_address)
        return nested

    def update_strings(self) -> None:
        artifact = self.contracts[STRING_STORAGE]
        for address in list(self.oracle.strings):
            if self.rng.randrange(3) != 0:
                continue
            value = random_string(self.rng)
            self.gateway.transact(artifact, address, "setString", [value], self.root_account, SET_STRING_GAS)
            self.oracle.record_string(address, value)
            self.stats.string_updates += 1
