"""
Adapter for the external statistics engine (R scripts).

Each call is a blocking subprocess whose stdout and stderr are captured
together, so a failure can be reported with the engine's full output.
"""

import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

from .errors import StatisticsEngineFailure

logger = logging.getLogger(__name__)


@dataclass
class EngineResult:
    """Exit status and combined output of one engine run."""

    command: List[str]
    returncode: int
    output: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class StatisticsEngine:
    """Runs statistics engine scripts found on PATH (or given as paths).

    Args:
        cwd: Working directory for engine processes (defaults to the
            current directory)
    """

    def __init__(self, cwd: Optional[Union[str, Path]] = None) -> None:
        self.cwd = Path(cwd) if cwd is not None else None

    def resolve(self, script: str) -> str:
        path = shutil.which(script)
        if path is None:
            raise StatisticsEngineFailure(
                f"{script} not found. Please ensure it is installed and you can run it."
            )
        return path

    def run(self, script: str, *args: Union[str, Path, int]) -> EngineResult:
        """Run ``script`` with ``args`` and wait for it to finish."""
        command = [self.resolve(script)] + [str(arg) for arg in args]
        logger.debug("Running: %s", " ".join(command))
        try:
            completed = subprocess.run(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
                cwd=self.cwd,
                check=False,
            )
        except OSError as exc:
            raise StatisticsEngineFailure(f"Could not run {script}: {exc}") from exc
        return EngineResult(command, completed.returncode, completed.stdout or "")

    def run_checked(self, script: str, *args: Union[str, Path, int], action: str = "") -> EngineResult:
        """Run ``script`` and raise StatisticsEngineFailure on a non-zero exit."""
        result = self.run(script, *args)
        if not result.ok:
            what = action or script
            raise StatisticsEngineFailure(
                f"Problems during {what} (exit code {result.returncode})",
                output=result.output,
                returncode=result.returncode,
            )
        return result
