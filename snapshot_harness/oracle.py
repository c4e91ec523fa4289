from __future__ import annotations

import logging
from typing import Dict, Iterable, Mapping, Optional

from .errors import OracleError
from .gateway import RpcGateway
from .models import ReferenceSnapshot

logger = logging.getLogger(__name__)


class StateOracle:
    """
    The harness-side mirror of expected node state.

    Contract strings are tracked as they are written, since the harness is
    the only writer. Balances are never mirrored: transfers pay fees the
    harness does not model, so they are read from the node exactly once, in
    ``capture_balances``, after the workload has stopped.
    """

    def __init__(self) -> None:
        self._strings: Dict[str, str] = {}
        self._reference: Optional[ReferenceSnapshot] = None

    @property
    def strings(self) -> Mapping[str, str]:
        return dict(self._strings)

    @property
    def captured(self) -> bool:
        return self._reference is not None

    @property
    def reference(self) -> ReferenceSnapshot:
        if self._reference is None:
            raise OracleError("Reference snapshot has not been captured")
        return self._reference

    def record_string(self, address: str, value: str) -> None:
        self._strings[address] = value

    def capture_balances(self, addresses: Iterable[str], gateway: RpcGateway) -> ReferenceSnapshot:
        if self._reference is not None:
            raise OracleError("Reference snapshot already captured")
        balances: Dict[str, int] = {}
        for address in addresses:
            # Duplicates (e.g. a self-transfer target) are queried once.
            if address in balances:
                continue
            balances[address] = gateway.get_balance(address)
        self._reference = ReferenceSnapshot.freeze(balances, self._strings)
        logger.info(
            "Captured reference: %d balances, %d strings",
            len(self._reference.balances),
            len(self._reference.strings),
        )
        return self._reference
