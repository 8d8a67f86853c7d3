"""
Run a project's install and build steps as a subprocess.

Output is read line by line, echoed to the worker log and handed to a LogSink
without ever waiting on the database.
"""

import asyncio
import logging
import os
import signal
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from deploy_common.errors import BuildFailed, OutputMissing

from .log_sink import LogSink
from .output_dir import detect_output_dir

logger = logging.getLogger(__name__)

CLEAN_INSTALL = "npm ci --legacy-peer-deps --no-audit --no-fund"
FALLBACK_INSTALL = "npm install --legacy-peer-deps --no-progress --no-audit --no-fund"
BUILD_STEP = "npm run build"

# Reader buffer size; longer lines are truncated to this many bytes
STREAM_LIMIT = 1024 * 1024


async def read_line(stream: asyncio.StreamReader, limit: int = STREAM_LIMIT) -> bytes:
    """
    Read one line like ``StreamReader.readline``, without failing on lines
    longer than the buffer limit.

    Only the first ``limit`` bytes of an oversized line are kept; the rest
    is read and discarded. Returns b"" at end of stream.
    """
    kept = b""
    while True:
        try:
            chunk = await stream.readuntil(b"\n")
        except asyncio.IncompleteReadError as e:
            chunk = e.partial
        except asyncio.LimitOverrunError as e:
            # Consume what was scanned so far and keep looking for the newline
            chunk = await stream.read(e.consumed)
            kept += chunk[: max(0, limit - len(kept))]
            continue
        return kept + chunk[: max(0, limit - len(kept))]


@dataclass
class ExecutionResult:
    """Outcome of a build that exited with status 0."""

    exit_code: int
    output_dir: Path
    line_count: int = 0
    tail: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.exit_code == 0


class BuildExecutor:
    """
    Executes ``install && build`` in a project directory.

    Args:
        command: Shell command to run instead of the npm install/build chain
        output_resolver: Maps the project directory to the expected output
            directory; may raise to reject the project before building
        tail_lines: Number of trailing output lines kept for error reports
        kill_timeout: Seconds to wait after SIGTERM before SIGKILL when the
            build is cancelled
    """

    def __init__(
        self,
        command: str | None = None,
        output_resolver: Callable[[Path], Path] = detect_output_dir,
        tail_lines: int = 20,
        kill_timeout: float = 5.0,
    ):
        self.command = command
        self.output_resolver = output_resolver
        self.tail_lines = tail_lines
        self.kill_timeout = kill_timeout

    def build_command(self, project_dir: Path) -> str:
        """
        Choose the command chain for a project.

        A lock file selects the reproducible clean install; otherwise the
        permissive install is used.
        """
        if self.command is not None:
            return self.command

        if (project_dir / "package-lock.json").exists():
            logger.info("Detected package-lock.json. Using 'npm ci'.")
            install = CLEAN_INSTALL
        else:
            logger.warning("No package-lock.json found. Falling back to 'npm install'.")
            install = FALLBACK_INSTALL
        return f"{install} && {BUILD_STEP}"

    async def run(
        self,
        project_dir: Path,
        env: dict[str, str] | None = None,
        sink: LogSink | None = None,
    ) -> ExecutionResult:
        """
        Build the project and verify its output directory.

        Args:
            project_dir: Checked-out project
            env: Extra environment variables (secrets); values are never logged
            sink: Optional log sink receiving every output line

        Returns:
            ExecutionResult for a successful build

        Raises:
            UnsupportedProject: If the output resolver rejects the project
            BuildFailed: If the subprocess exits non-zero
            OutputMissing: If the output directory is absent after the build
        """
        project_dir = Path(project_dir)
        output_dir = self.output_resolver(project_dir)
        logger.info(f"Expected build output directory: {output_dir.name}")

        command = self.build_command(project_dir)
        env = env or {}
        logger.info(f"Injecting {len(env)} environment variables into the build")

        process = await asyncio.create_subprocess_exec(
            "sh",
            "-c",
            command,
            cwd=project_dir,
            env={**os.environ, **env},
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            start_new_session=True,
            limit=STREAM_LIMIT,
        )

        # Assert stdout is available (we specified PIPE)
        assert process.stdout is not None

        tail: deque[str] = deque(maxlen=self.tail_lines)
        line_count = 0
        try:
            while True:
                line = await read_line(process.stdout)
                if not line:
                    break
                text = line.decode(errors="replace").rstrip("\r\n")
                line_count += 1
                tail.append(text)
                logger.info(f"[build] {text}")
                if sink is not None:
                    sink.append(text)

            exit_code = await process.wait()
        except BaseException:
            # Cancellation, deadline or a failing sink: never leave the build running
            await self._kill(process)
            raise

        if exit_code != 0:
            logger.error(f"Build failed with exit code {exit_code}")
            raise BuildFailed(exit_code, list(tail))

        if not output_dir.is_dir():
            raise OutputMissing(f"Build folder not found after build: {output_dir}")

        return ExecutionResult(
            exit_code=exit_code,
            output_dir=output_dir,
            line_count=line_count,
            tail=list(tail),
        )

    async def _kill(self, process: asyncio.subprocess.Process) -> None:
        """Terminate the build's whole process group."""
        if process.returncode is not None:
            return

        logger.warning(f"Terminating build process group {process.pid}")
        try:
            os.killpg(process.pid, signal.SIGTERM)
            try:
                await asyncio.wait_for(process.wait(), timeout=self.kill_timeout)
            except asyncio.TimeoutError:
                os.killpg(process.pid, signal.SIGKILL)
                await process.wait()
        except ProcessLookupError:
            pass
