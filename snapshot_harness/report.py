from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import HarnessError
from .models import RunResult


def build_report(
    result: Optional[RunResult] = None,
    error: Optional[HarnessError] = None,
    seed: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Summarize a run as a JSON-serializable dict.

    ``result`` is PASS or FAIL when the cycle reached verification; an aborted
    run (``error``) is reported as ERROR with the phase it died in.
    """
    report: Dict[str, Any] = {
        "result": "ERROR",
        "phase": None,
        "seed": seed,
        "mismatch": None,
        "error": None,
        "accounts": [],
        "reference": None,
    }
    if result is not None:
        report["result"] = "PASS" if result.passed else "FAIL"
        report["phase"] = result.phase.value
        report["seed"] = result.seed
        report["accounts"] = list(result.accounts)
        if result.reference is not None:
            report["reference"] = result.reference.to_dict()
        if result.mismatch is not None:
            mismatch = result.mismatch
            report["mismatch"] = {
                "kind": mismatch.kind.value,
                "address": mismatch.address,
                "expected": str(mismatch.expected),
                "observed": str(mismatch.observed),
            }
    if error is not None:
        report["phase"] = error.phase
        report["error"] = {"type": type(error).__name__, "message": error.message}
    return report


def write_report(path: Path, report: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(report, f, indent=2)
        f.write("\n")
