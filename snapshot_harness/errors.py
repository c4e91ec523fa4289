from __future__ import annotations

from typing import Optional


class HarnessError(Exception):
    """Base error for anything that voids a snapshot test run."""

    def __init__(self, message: str, phase: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.phase = phase

    def __str__(self) -> str:
        if self.phase:
            return f"[{self.phase}] {self.message}"
        return self.message


class ConfigError(HarnessError):
    pass


class ProcessError(HarnessError):
    pass


class OracleError(HarnessError):
    pass


class RpcError(HarnessError):
    """A gateway call failed; ``operation`` names the call that was in flight."""

    def __init__(self, operation: str, detail: str, phase: Optional[str] = None):
        super().__init__(f"{operation} failed: {detail}", phase)
        self.operation = operation
        self.detail = detail
