"""Environment self-checks.

This module powers the ``haplink doctor`` CLI command. Variant calling needs the external
``bam-readcount`` tool unless a precomputed table is passed with ``--readcounts``.
"""

from __future__ import annotations

import logging
import platform
import shutil
from dataclasses import dataclass
from typing import Dict, Optional

from .external import BAM_READCOUNT, install_hint

logger = logging.getLogger(__name__)

TOOLS = (BAM_READCOUNT,)


@dataclass(frozen=True)
class CheckResult:
    name: str
    ok: bool
    detail: str
    howto: Optional[str] = None


def check_python() -> CheckResult:
    v = platform.python_version()
    return CheckResult(name="python", ok=True, detail=f"Python {v}")


def check_pysam() -> CheckResult:
    import pysam

    return CheckResult(name="pysam", ok=True, detail=f"pysam {pysam.__version__}")


def check_executable(name: str) -> CheckResult:
    p = shutil.which(name)
    if p is None:
        return CheckResult(name=name, ok=False, detail="not found in PATH", howto=install_hint(name))
    return CheckResult(name=name, ok=True, detail=p)


def collect_checks() -> Dict[str, CheckResult]:
    """Run all checks and return a mapping name->result."""
    checks: Dict[str, CheckResult] = {
        "python": check_python(),
        "pysam": check_pysam(),
    }
    for tool in TOOLS:
        checks[tool] = check_executable(tool)
    return checks
