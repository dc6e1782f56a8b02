from __future__ import annotations

import enum
import logging
import json
import re
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

import httpx

from exam_compiler.core.config import Settings
from exam_compiler.core.languages import Language

logger = logging.getLogger(__name__)

NO_OUTPUT = "No output returned."
TIMEOUT_MESSAGE = (
    "Execution timed out. Please try again or check your network connection."
)

# Substring heuristics only; this is not a sandbox.
UNSAFE_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"while\s*\(\s*(true|1)\s*\)"), "infinite loop"),
    (re.compile(r"while\s+(True|1)\s*:"), "infinite loop"),
    (re.compile(r"for\s*\(\s*;\s*;\s*\)"), "infinite loop"),
    (re.compile(r"\bfork\s*\("), "process fork"),
    (re.compile(r"\bsystem\s*\("), "shell command"),
    (re.compile(r"\bexec(l|lp|le|v|vp|ve)?\s*\("), "process exec"),
    (re.compile(r"\bpopen\s*\(", re.IGNORECASE), "shell command"),
    (re.compile(r"child_process"), "process spawn"),
    (re.compile(r"Runtime\s*\.\s*getRuntime\s*\("), "process exec"),
)


class RunKind(str, enum.Enum):
    OUTPUT = "output"
    COMPILE_ERROR = "compile_error"
    RUNTIME_ERROR = "runtime_error"
    SERVICE_ERROR = "service_error"
    REJECTED = "rejected"
    COOLDOWN = "cooldown"
    TIMEOUT = "timeout"
    FAILED = "failed"


class ExecutionError(Exception):
    kind: RunKind = RunKind.FAILED

    def display(self) -> str:
        return str(self)


class PolicyRejected(ExecutionError):
    kind = RunKind.REJECTED


class CooldownActive(ExecutionError):
    kind = RunKind.COOLDOWN

    def __init__(self, remaining_ms: int) -> None:
        super().__init__(f"Please wait {remaining_ms / 1000:.1f}s before running again.")
        self.remaining_ms = remaining_ms


class ExecutionTimeout(ExecutionError):
    kind = RunKind.TIMEOUT

    def display(self) -> str:
        return TIMEOUT_MESSAGE


class ExecutionFailed(ExecutionError):
    kind = RunKind.FAILED

    def display(self) -> str:
        return f"Execution failed: {self}"


@dataclass(frozen=True, slots=True)
class ExecutionResponse:
    compile_stderr: str | None = None
    run_stderr: str | None = None
    run_output: str | None = None
    error_message: str | None = None
    has_run: bool = False

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ExecutionResponse":
        compile_stage = payload.get("compile") or {}
        run_stage = payload.get("run")
        run = run_stage if isinstance(run_stage, dict) else {}
        return cls(
            compile_stderr=compile_stage.get("stderr") if isinstance(compile_stage, dict) else None,
            run_stderr=run.get("stderr"),
            run_output=run.get("output"),
            error_message=payload.get("message"),
            has_run=isinstance(run_stage, dict),
        )


@dataclass(frozen=True, slots=True)
class RunReport:
    kind: RunKind
    output: str

    @property
    def completed(self) -> bool:
        """True when the service answered, even with a compile or runtime error."""
        return self.kind in (
            RunKind.OUTPUT,
            RunKind.COMPILE_ERROR,
            RunKind.RUNTIME_ERROR,
            RunKind.SERVICE_ERROR,
        )


def classify(response: ExecutionResponse) -> RunReport:
    if response.compile_stderr:
        return RunReport(RunKind.COMPILE_ERROR, f"Compilation Error:\n{response.compile_stderr}")
    if response.run_stderr:
        return RunReport(RunKind.RUNTIME_ERROR, f"Runtime Error:\n{response.run_stderr}")
    if response.has_run:
        return RunReport(RunKind.OUTPUT, response.run_output or NO_OUTPUT)
    return RunReport(
        RunKind.SERVICE_ERROR, f"Error: {response.error_message or 'Unknown error occurred'}"
    )


def check_content(source: str, stdin: str, *, max_source_chars: int, max_stdin_chars: int) -> None:
    if len(source) > max_source_chars:
        raise PolicyRejected(
            f"Code is too long ({len(source)} characters, limit {max_source_chars})."
        )
    if len(stdin) > max_stdin_chars:
        raise PolicyRejected(
            f"Input is too long ({len(stdin)} characters, limit {max_stdin_chars})."
        )
    for pattern, label in UNSAFE_PATTERNS:
        if pattern.search(source):
            raise PolicyRejected(f"Code rejected: potentially unsafe pattern ({label}).")


class CooldownGate:
    """Rejects acquisitions closer together than ``interval_ms``."""

    def __init__(self, interval_ms: int, clock: Callable[[], float] = time.monotonic) -> None:
        self.interval_ms = interval_ms
        self._clock = clock
        self._last: float | None = None
        self._lock = threading.Lock()

    def acquire(self) -> None:
        with self._lock:
            now = self._clock()
            if self._last is not None:
                elapsed_ms = (now - self._last) * 1000
                if elapsed_ms < self.interval_ms:
                    raise CooldownActive(int(self.interval_ms - elapsed_ms))
            self._last = now


class ExecutionClient:
    """Client for a Piston-compatible remote execution service.

    One client belongs to one editor session; its cooldown gate is shared by
    the Run and Run Tests actions of that session.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.gate = CooldownGate(settings.run_cooldown_ms, clock)
        self._http = httpx.Client(
            transport=transport,
            timeout=httpx.Timeout(settings.exec_timeout_ms / 1000.0),
        )

    def close(self) -> None:
        self._http.close()

    def check(self, source: str, stdin: str | None = None) -> None:
        check_content(
            source,
            stdin or "",
            max_source_chars=self.settings.max_source_chars,
            max_stdin_chars=self.settings.max_stdin_chars,
        )

    def execute(self, source: str, stdin: str | None, language: Language) -> ExecutionResponse:
        """Submit ``source`` once, retrying once on failure.

        Raises PolicyRejected before any network call, or ExecutionTimeout /
        ExecutionFailed when the final attempt fails.
        """
        stdin = stdin or ""
        self.check(source, stdin)
        body = {
            "language": language.api_name,
            "version": language.version,
            "files": [{"content": source}],
            "stdin": stdin,
        }

        attempts = 1 + max(self.settings.exec_max_retries, 0)
        attempt = 1
        while True:
            try:
                return self._post(body)
            except ExecutionError as exc:
                if attempt >= attempts:
                    logger.error(f"Execution failed after {attempts} attempts: {exc}")
                    raise
                logger.warning(
                    f"Execution attempt {attempt}/{attempts} failed ({exc.kind.value}): {exc}; retrying"
                )
                attempt += 1

    def _expire(self, deadline: float) -> None:
        if time.monotonic() > deadline:
            raise ExecutionTimeout(f"no complete response within {self.settings.exec_timeout_ms} ms")

    def _post(self, body: dict[str, Any]) -> ExecutionResponse:
        """One attempt, bounded end to end by ``exec_timeout_ms``.

        httpx only limits each connect/read/write phase, so the body is
        streamed and the overall deadline checked between chunks.
        """
        logger.info(f"Submitting {body['language']} {body['version']} code to {self.settings.piston_url}")
        deadline = time.monotonic() + self.settings.exec_timeout_ms / 1000.0
        chunks: list[bytes] = []
        try:
            with self._http.stream("POST", self.settings.piston_url, json=body) as response:
                self._expire(deadline)
                if response.status_code >= 500:
                    raise ExecutionFailed(f"service returned HTTP {response.status_code}")
                for chunk in response.iter_bytes():
                    chunks.append(chunk)
                    self._expire(deadline)
        except httpx.TimeoutException as exc:
            raise ExecutionTimeout(f"no response within {self.settings.exec_timeout_ms} ms") from exc
        except httpx.HTTPError as exc:
            raise ExecutionFailed(str(exc) or exc.__class__.__name__) from exc

        try:
            payload = json.loads(b"".join(chunks))
        except ValueError as exc:
            raise ExecutionFailed(f"invalid response from service (HTTP {response.status_code})") from exc
        if not isinstance(payload, dict):
            raise ExecutionFailed("invalid response from service")
        return ExecutionResponse.from_payload(payload)

    def run(self, source: str, stdin: str | None, language: Language) -> RunReport:
        """The Run action: cooldown gate, execute, classify.

        Never raises for execution problems; they come back as display text.
        """
        try:
            self.check(source, stdin)
            self.gate.acquire()
            return classify(self.execute(source, stdin, language))
        except ExecutionError as exc:
            return RunReport(exc.kind, exc.display())
