"""Wrapper for the one external tool HapLink shells out to (bam-readcount).

Commands are run with captured output so a failure can be reported with the tail of the
tool's stderr.
"""

from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)

BAM_READCOUNT = "bam-readcount"

_INSTALL_HINTS = {
    "bam-readcount": (
        "Conda/mamba: mamba install -c bioconda bam-readcount\n"
        "Source: https://github.com/genome/bam-readcount"
    ),
}


class ExternalCommandError(RuntimeError):
    """Raised when an external command exits with a non-zero status."""

    def __init__(
        self,
        message: str,
        *,
        cmd: Sequence[str],
        returncode: int,
        stderr: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.cmd = list(cmd)
        self.returncode = int(returncode)
        self.stderr = stderr


def cmd_to_str(cmd: Sequence[str]) -> str:
    return " ".join(shlex.quote(str(x)) for x in cmd)


def install_hint(exe: str) -> Optional[str]:
    return _INSTALL_HINTS.get(exe)


def ensure_executable_in_path(exe: str) -> str:
    """Return the full path of ``exe`` or raise FileNotFoundError with install advice."""
    path = shutil.which(exe)
    if path is None:
        msg = f"Required executable '{exe}' was not found in your PATH."
        hint = install_hint(exe)
        if hint:
            msg += "\n\n" + hint
        raise FileNotFoundError(msg)
    return path


def _tail(s: Optional[str], n: int = 3000) -> str:
    if not s:
        return "(empty)"
    if len(s) <= n:
        return s
    return "..." + s[-n:]


def run_command(
    cmd: Sequence[str | Path],
    *,
    cwd: Optional[str | Path] = None,
    check: bool = True,
) -> subprocess.CompletedProcess:
    """Run ``cmd`` capturing text stdout/stderr.

    Raises ``ExternalCommandError`` on a non-zero exit when ``check`` is True.
    """
    argv: List[str] = [str(x) for x in cmd]
    logger.debug("Running command: %s", cmd_to_str(argv))

    cp = subprocess.run(
        argv,
        cwd=str(cwd) if cwd is not None else None,
        check=False,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    )

    if check and cp.returncode != 0:
        raise ExternalCommandError(
            f"External command failed (exit code {cp.returncode}).\n\n"
            f"Command:\n  {cmd_to_str(argv)}\n\n"
            f"STDERR (tail):\n  {_tail(cp.stderr)}",
            cmd=argv,
            returncode=cp.returncode,
            stderr=cp.stderr,
        )
    return cp
