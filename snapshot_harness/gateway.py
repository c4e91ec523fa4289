from __future__ import annotations

import contextlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

from eth_account import Account
from web3 import Web3
from web3.exceptions import Web3Exception
from web3.logs import DISCARD

from .errors import RpcError
from .models import ContractArtifact
from .timing import settle

logger = logging.getLogger(__name__)

TRANSFER_GAS = 21000


@dataclass(slots=True)
class TxOutcome:
    """A mined transaction plus the events it emitted, decoded by name."""

    tx_hash: str
    contract_address: Optional[str] = None
    events: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)


class RpcGateway(ABC):
    """Capabilities the harness needs from a running node."""

    @abstractmethod
    def new_account(self) -> str:
        """Create a locally held account and return its address."""

    @abstractmethod
    def node_accounts(self) -> List[str]:
        """Accounts managed by the node itself; the first is the coinbase."""

    @abstractmethod
    def get_balance(self, address: str) -> int: ...

    @abstractmethod
    def send_value(self, sender: str, recipient: str, amount: int) -> TxOutcome: ...

    @abstractmethod
    def fund_from_faucet(self, faucet: str, recipient: str, amount: int) -> TxOutcome: ...

    @abstractmethod
    def deploy_contract(
        self, artifact: ContractArtifact, sender: str, args: Sequence[Any], gas: int
    ) -> TxOutcome: ...

    @abstractmethod
    def transact(
        self,
        artifact: ContractArtifact,
        address: str,
        method: str,
        args: Sequence[Any],
        sender: str,
        gas: int,
    ) -> TxOutcome: ...

    @abstractmethod
    def call_contract(
        self, artifact: ContractArtifact, address: str, method: str, args: Sequence[Any] = ()
    ) -> Any: ...


@contextlib.contextmanager
def rpc_call(operation: str) -> Iterator[None]:
    try:
        yield
    except RpcError:
        raise
    except (Web3Exception, ValueError, OSError) as exc:
        raise RpcError(operation, f"{type(exc).__name__}: {exc}") from exc


class Web3Gateway(RpcGateway):
    """
    Node access over the IPC socket in the node's data directory.

    Generated accounts are signed locally; the node only ever sees raw
    transactions for them. Balance reads use the pending view so that a
    feasibility check reflects transactions the harness has just submitted.
    """

    def __init__(self, w3: Web3, faucet_password: str = "", receipt_timeout: float = 600.0):
        self.w3 = w3
        self.faucet_password = faucet_password
        self.receipt_timeout = receipt_timeout
        self._keys: Dict[str, Any] = {}
        self._chain_id: Optional[int] = None

    @classmethod
    def connect(
        cls,
        ipc_path: Path,
        startup_grace: float = 15.0,
        faucet_password: str = "",
        receipt_timeout: float = 600.0,
        keys: Optional[Dict[str, Any]] = None,
    ) -> "Web3Gateway":
        settle(startup_grace, "node startup")
        w3 = Web3(Web3.IPCProvider(str(ipc_path)))
        w3.eth.default_block = "pending"
        with rpc_call("connect"):
            if not w3.is_connected():
                raise RpcError("connect", f"no node listening on {ipc_path}")
        gateway = cls(w3, faucet_password=faucet_password, receipt_timeout=receipt_timeout)
        # Keys survive reconnects so previously generated accounts can still sign.
        if keys:
            gateway._keys.update(keys)
        logger.info("Connected to node at %s", ipc_path)
        return gateway

    @property
    def keys(self) -> Dict[str, Any]:
        return dict(self._keys)

    @property
    def chain_id(self) -> int:
        if self._chain_id is None:
            with rpc_call("eth_chainId"):
                self._chain_id = self.w3.eth.chain_id
        return self._chain_id

    def new_account(self) -> str:
        account = Account.create()
        self._keys[account.address] = account.key
        return account.address

    def node_accounts(self) -> List[str]:
        with rpc_call("eth_accounts"):
            return list(self.w3.eth.accounts)

    def get_balance(self, address: str) -> int:
        with rpc_call(f"eth_getBalance({address})"):
            return int(self.w3.eth.get_balance(address))

    def send_value(self, sender: str, recipient: str, amount: int) -> TxOutcome:
        tx = {"to": recipient, "value": amount, "gas": TRANSFER_GAS}
        return self._send_signed(f"transfer {sender} -> {recipient}", sender, tx)

    def fund_from_faucet(self, faucet: str, recipient: str, amount: int) -> TxOutcome:
        operation = f"personal_sendTransaction {faucet} -> {recipient}"
        tx = {
            "from": faucet,
            "to": recipient,
            "value": hex(amount),
            "gas": hex(TRANSFER_GAS),
        }
        with rpc_call(operation):
            tx_hash = self.w3.manager.request_blocking(
                "personal_sendTransaction", [tx, self.faucet_password]
            )
        receipt = self._wait_for_receipt(operation, tx_hash)
        return TxOutcome(tx_hash=Web3.to_hex(receipt["transactionHash"]))

    def deploy_contract(
        self, artifact: ContractArtifact, sender: str, args: Sequence[Any], gas: int
    ) -> TxOutcome:
        operation = f"deploy {artifact.name}"
        with rpc_call(operation):
            factory = self.w3.eth.contract(abi=artifact.abi, bytecode=artifact.bytecode)
            tx = factory.constructor(*args).build_transaction(self._tx_base(sender, gas))
        return self._send_signed(operation, sender, tx, artifact=artifact)

    def transact(
        self,
        artifact: ContractArtifact,
        address: str,
        method: str,
        args: Sequence[Any],
        sender: str,
        gas: int,
    ) -> TxOutcome:
        operation = f"{artifact.name}({address}).{method}"
        with rpc_call(operation):
            contract = self.w3.eth.contract(address=address, abi=artifact.abi)
            function = getattr(contract.functions, method)(*args)
            tx = function.build_transaction(self._tx_base(sender, gas))
        return self._send_signed(operation, sender, tx, artifact=artifact)

    def call_contract(
        self, artifact: ContractArtifact, address: str, method: str, args: Sequence[Any] = ()
    ) -> Any:
        with rpc_call(f"{artifact.name}({address}).{method} call"):
            contract = self.w3.eth.contract(address=address, abi=artifact.abi)
            return getattr(contract.functions, method)(*args).call()

    def _tx_base(self, sender: str, gas: int) -> Dict[str, Any]:
        with rpc_call(f"prepare tx from {sender}"):
            return {
                "from": sender,
                "gas": gas,
                "gasPrice": self.w3.eth.gas_price,
                "nonce": self.w3.eth.get_transaction_count(sender, "pending"),
                "chainId": self.chain_id,
            }

    def _send_signed(
        self,
        operation: str,
        sender: str,
        tx: Dict[str, Any],
        artifact: Optional[ContractArtifact] = None,
    ) -> TxOutcome:
        key = self._keys.get(sender)
        if key is None:
            raise RpcError(operation, f"no local key for {sender}")
        if "nonce" not in tx:
            tx = {**self._tx_base(sender, tx["gas"]), **tx}
        tx.pop("from", None)
        with rpc_call(operation):
            signed = Account.sign_transaction(tx, key)
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        receipt = self._wait_for_receipt(operation, tx_hash)
        outcome = TxOutcome(
            tx_hash=Web3.to_hex(receipt["transactionHash"]),
            contract_address=receipt.get("contractAddress"),
        )
        if artifact is not None:
            address = tx.get("to") or receipt.get("contractAddress")
            outcome.events = self._decode_events(operation, artifact, receipt, address)
        return outcome

    def _wait_for_receipt(self, operation: str, tx_hash: Any):
        with rpc_call(operation):
            receipt = self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.receipt_timeout
            )
        if receipt.get("status") != 1:
            raise RpcError(operation, f"transaction {Web3.to_hex(tx_hash)} reverted")
        return receipt

    def _decode_events(
        self, operation: str, artifact: ContractArtifact, receipt, address: Optional[str]
    ) -> Dict[str, List[Dict[str, Any]]]:
        events: Dict[str, List[Dict[str, Any]]] = {}
        with rpc_call(f"{operation} events"):
            contract = self.w3.eth.contract(address=address, abi=artifact.abi)
            for entry in artifact.abi:
                if entry.get("type") != "event":
                    continue
                name = entry["name"]
                logs = getattr(contract.events, name)().process_receipt(receipt, errors=DISCARD)
                if logs:
                    events[name] = [dict(log["args"]) for log in logs]
        return events
