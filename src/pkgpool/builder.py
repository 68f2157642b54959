"""Build command execution."""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BuildResult:
    """Exit status and captured output of a build command."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def success(self) -> bool:
        return self.exit_code == 0


class ShellBuilder:
    """Builder that runs build commands through a system shell."""

    def __init__(self, shell: str = "/bin/sh"):
        self.shell = shell

    async def build(self, command: str, working_dir: Path) -> BuildResult:
        """Run `command` with `shell -c` inside `working_dir` and wait for it.

        A process-level cancellation kills the child before propagating.
        """
        logger.debug(f"Running build in {working_dir}: {command}")
        process = await asyncio.create_subprocess_exec(
            self.shell,
            "-c",
            command,
            cwd=working_dir,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise

        result = BuildResult(
            exit_code=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
        )
        if not result.success:
            logger.debug(f"Build exited with code {result.exit_code}")
        return result
