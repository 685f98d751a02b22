"""Async runner for the OpenClaw CLI."""

from __future__ import annotations

import asyncio
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from .utils import missing_env_vars, placeholder_env_value, sanitize_environment

logger = logging.getLogger(__name__)


class OpenclawRunnerError(RuntimeError):
    """Base class for OpenClaw runner errors."""


class OpenclawNotFoundError(OpenclawRunnerError):
    """Raised when the OpenClaw CLI executable cannot be located."""


class OpenclawTimeoutError(OpenclawRunnerError):
    """Raised when a command outlives the caller-supplied timeout."""


@dataclass(slots=True)
class OpenclawExecutionResult:
    """Holds the outcome of an OpenClaw CLI invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class OpenclawCommandError(OpenclawRunnerError):
    """Raised when an OpenClaw command exits with a non-zero status."""

    def __init__(self, result: OpenclawExecutionResult) -> None:
        self.result = result
        super().__init__(f"openclaw exited with code {result.returncode}")


class OpenclawRunner:
    """Execute OpenClaw CLI commands asynchronously."""

    def __init__(self, executable: Path | None = None) -> None:
        self._executable_path = self._resolve_executable(executable)

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise OpenclawNotFoundError(f"OpenClaw executable not found at {candidate}")

        binary = shutil.which("openclaw")
        if binary is None:
            raise OpenclawNotFoundError("OpenClaw CLI executable not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    async def version(self) -> OpenclawExecutionResult:
        return await self._invoke("--version")

    async def run(self, *args: str, timeout_ms: int | None = None) -> OpenclawExecutionResult:
        """Run a command, raising on non-zero exit.

        A command that reports missing credential variables is retried once with
        placeholder values for exactly those variables.
        """

        result = await self._invoke(*args, timeout_ms=timeout_ms)
        if result.ok:
            return result

        missing = missing_env_vars(result.stderr, result.stdout)
        if missing:
            logger.info("Retrying openclaw with placeholder env vars", extra={"vars": missing})
            overrides = {name: placeholder_env_value(name) for name in missing}
            result = await self._invoke(*args, timeout_ms=timeout_ms, env_overrides=overrides)
            if result.ok:
                return result

        raise OpenclawCommandError(result)

    async def _invoke(
        self,
        *args: str,
        timeout_ms: int | None = None,
        env_overrides: dict[str, str] | None = None,
    ) -> OpenclawExecutionResult:
        cmd = [str(self._executable_path), *args]
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=sanitize_environment(env_overrides),
        )
        timeout = timeout_ms / 1000 if timeout_ms else None
        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(process.communicate(), timeout)
        except asyncio.TimeoutError as exc:
            process.kill()
            await process.wait()
            raise OpenclawTimeoutError(
                f"openclaw {args[0] if args else ''} timed out after {timeout_ms}ms"
            ) from exc
        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        return OpenclawExecutionResult(args=tuple(cmd), returncode=process.returncode, stdout=stdout, stderr=stderr)


class FakeOpenclawRunner(OpenclawRunner):
    """Test double that simulates OpenClaw CLI responses.

    Responses may be results or exceptions; exceptions are raised in order.
    """

    def __init__(
        self, responses: Iterable[OpenclawExecutionResult | Exception] | None = None
    ) -> None:  # type: ignore[override]
        self._responses = list(responses or [])
        self._invocations: list[tuple[str, ...]] = []
        self._executable_path = Path("/tmp/fake-openclaw")

    async def _invoke(self, *args: str, timeout_ms=None, env_overrides=None) -> OpenclawExecutionResult:  # type: ignore[override]
        self._invocations.append(tuple(args))
        if self._responses:
            response = self._responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response
        return OpenclawExecutionResult(args=tuple(args), returncode=0, stdout="", stderr="")

    @property
    def invocations(self) -> list[tuple[str, ...]]:
        return self._invocations
