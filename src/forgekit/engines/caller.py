"""Client side of the engine protocol: spawn, handshake, one tool call, shut down."""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Sequence
from pathlib import Path
from typing import IO, Any

from pydantic import BaseModel, ConfigDict, ValidationError

from forgekit.engines.protocol import (
    MCP_FLAG,
    METHOD_INITIALIZE,
    METHOD_INITIALIZED,
    METHOD_TOOLS_CALL,
    PROTOCOL_VERSION,
    RpcRequest,
    ToolCallResult,
    decode_message,
    encode_message,
)
from forgekit.engines.run_cmd import Popen, TimeoutExpired, inherited_env, spawn_piped
from forgekit.kernel.errors import InvocationCancelledError, InvocationError

_LOGGER = logging.getLogger(__name__)

CLIENT_NAME = "forgekit"
_POLL_INTERVAL_S = 0.05
_SHUTDOWN_GRACE_S = 2.0
_EOF = None


class CancelToken:
    """Cooperative cancellation flag shared between a caller and invocations."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class StructuredResult(BaseModel):
    """Successful tool call outcome."""

    model_config = ConfigDict(frozen=True)

    tool_name: str
    success: bool = True
    message: str = ""
    payload: Any = None
    stdout: str = ""
    stderr: str = ""


class _EngineProcess:
    """Running engine with background readers on stdout and stderr."""

    def __init__(self, proc: Popen[str], label: str) -> None:
        self._proc = proc
        self._label = label
        self._messages: queue.Queue[dict[str, Any] | None] = queue.Queue()
        self._stray_stdout: list[str] = []
        self._stderr: list[str] = []
        self._readers = [
            threading.Thread(target=self._read_stdout, daemon=True),
            threading.Thread(target=self._read_stderr, daemon=True),
        ]
        for reader in self._readers:
            reader.start()

    def _read_stdout(self) -> None:
        stream = self._proc.stdout
        if stream is not None:
            for line in stream:
                message = decode_message(line)
                if message is None:
                    if line.strip():
                        self._stray_stdout.append(line.rstrip("\n"))
                    continue
                self._messages.put(message)
        self._messages.put(_EOF)

    def _read_stderr(self) -> None:
        stream = self._proc.stderr
        if stream is None:
            return
        for line in stream:
            text = line.rstrip("\n")
            self._stderr.append(text)
            _LOGGER.debug("[%s] %s", self._label, text)

    @property
    def stdout_text(self) -> str:
        return "\n".join(self._stray_stdout)

    @property
    def stderr_text(self) -> str:
        return "\n".join(self._stderr)

    def send(self, request: RpcRequest) -> None:
        stdin: IO[str] | None = self._proc.stdin
        if stdin is None:
            raise InvocationError(f"engine {self._label} has no stdin")
        try:
            stdin.write(encode_message(request))
            stdin.flush()
        except (BrokenPipeError, OSError) as exc:
            raise InvocationError(
                f"engine {self._label} closed its input: {exc}"
            ) from exc

    def receive(
        self,
        request_id: int,
        *,
        deadline: float | None,
        cancel: CancelToken | None,
    ) -> dict[str, Any]:
        """Wait for the response to ``request_id``; skip notifications and stray ids.

        Raises:
            InvocationCancelledError: On cancellation or deadline.
            InvocationError: If the engine exits before answering.
        """
        while True:
            if cancel is not None and cancel.cancelled:
                raise InvocationCancelledError(f"engine {self._label} call cancelled")
            wait_s = _POLL_INTERVAL_S
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise InvocationCancelledError(
                        f"engine {self._label} call exceeded its deadline"
                    )
                wait_s = min(wait_s, remaining)
            try:
                message = self._messages.get(timeout=wait_s)
            except queue.Empty:
                continue
            if message is _EOF:
                self._proc.wait()
                raise InvocationError(
                    f"engine {self._label} exited before responding "
                    f"(exit code {self._proc.returncode})"
                )
            if message.get("id") != request_id or "method" in message:
                _LOGGER.debug("[%s] ignoring message %s", self._label, message)
                continue
            return message

    def close(self, *, force: bool = False) -> None:
        """Stop the engine: close stdin, wait briefly, then terminate and kill."""
        if self._proc.stdin is not None and not self._proc.stdin.closed:
            try:
                self._proc.stdin.close()
            except OSError:
                _LOGGER.debug("[%s] stdin already closed", self._label)
        if force:
            self._proc.terminate()
        try:
            self._proc.wait(timeout=_SHUTDOWN_GRACE_S)
        except TimeoutExpired:
            self._proc.terminate()
            try:
                self._proc.wait(timeout=_SHUTDOWN_GRACE_S)
            except TimeoutExpired:
                self._proc.kill()
                self._proc.wait()
        for reader in self._readers:
            reader.join(timeout=_SHUTDOWN_GRACE_S)


def _unwrap(response: dict[str, Any], what: str, label: str) -> dict[str, Any]:
    error = response.get("error")
    if error is not None:
        message = error.get("message", "") if isinstance(error, dict) else str(error)
        raise InvocationError(
            f"engine {label} rejected {what}: {message}",
            data={"rpc_error": error},
        )
    result = response.get("result")
    if not isinstance(result, dict):
        raise InvocationError(f"engine {label} sent no result for {what}")
    return result


def _call(
    engine: _EngineProcess,
    label: str,
    tool_name: str,
    arguments: dict[str, Any],
    deadline: float | None,
    cancel: CancelToken | None,
) -> ToolCallResult:
    engine.send(
        RpcRequest(
            id=1,
            method=METHOD_INITIALIZE,
            params={
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": {"name": CLIENT_NAME},
            },
        )
    )
    _unwrap(engine.receive(1, deadline=deadline, cancel=cancel), "initialize", label)
    engine.send(RpcRequest(method=METHOD_INITIALIZED))
    engine.send(
        RpcRequest(
            id=2,
            method=METHOD_TOOLS_CALL,
            params={"name": tool_name, "arguments": arguments},
        )
    )
    result = _unwrap(
        engine.receive(2, deadline=deadline, cancel=cancel), tool_name, label
    )
    try:
        return ToolCallResult.model_validate(result)
    except ValidationError as exc:
        raise InvocationError(
            f"engine {label} returned a malformed {tool_name} result: {exc}"
        ) from exc


def invoke_tool(
    command: str,
    args: Sequence[str],
    tool_name: str,
    arguments: dict[str, Any],
    *,
    timeout_s: float | None = None,
    cancel: CancelToken | None = None,
    env: dict[str, str] | None = None,
    cwd: str | Path | None = None,
) -> StructuredResult:
    """Run one tool call against an engine subprocess.

    The engine is started as ``command *args --mcp`` and torn down before
    returning, whatever the outcome.

    Args:
        command: Executable to start.
        args: Arguments placed before the protocol flag.
        tool_name: Tool to call (build, buildBatch, run, detectDependencies).
        arguments: Tool arguments, already in wire (camelCase) form.
        timeout_s: Overall deadline for the whole exchange.
        cancel: Token checked while waiting for the engine.
        env: Extra environment variables layered over the inherited environment.
        cwd: Working directory for the engine.

    Returns:
        StructuredResult with the tool's message and structured payload.

    Raises:
        InvocationCancelledError: Cancelled or deadline passed; engine terminated.
        InvocationError: Start failure, early exit, protocol violation, or
            an ``isError`` tool result.
    """
    label = Path(command).name
    argv = [command, *args, MCP_FLAG]
    deadline = None if timeout_s is None else time.monotonic() + timeout_s
    try:
        proc = spawn_piped(argv, cwd=cwd, env=inherited_env(env))
    except OSError as exc:
        raise InvocationError(
            f"failed to start engine {command}: {exc}",
            data={"argv": argv},
        ) from exc

    engine = _EngineProcess(proc, label)
    try:
        result = _call(engine, label, tool_name, arguments, deadline, cancel)
    except InvocationError as exc:
        engine.close(force=True)
        exc.stdout = engine.stdout_text
        exc.stderr = engine.stderr_text
        raise
    except BaseException:
        engine.close(force=True)
        raise
    engine.close()

    if result.is_error:
        raise InvocationError(
            f"engine {label} tool {tool_name} failed: {result.message}",
            data={"payload": result.structured_content},
            stdout=engine.stdout_text,
            stderr=engine.stderr_text,
        )
    return StructuredResult(
        tool_name=tool_name,
        message=result.message,
        payload=result.structured_content,
        stdout=engine.stdout_text,
        stderr=engine.stderr_text,
    )
