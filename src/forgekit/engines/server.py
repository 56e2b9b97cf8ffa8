"""Engine side of the protocol: register tools, then serve stdin/stdout.

Engine programs look like::

    server = EngineServer("my-builder", "1.0.0")
    register_builder_tools(server, "my-builder", build_one)
    raise SystemExit(run_engine(server))

Tool handlers never raise across the wire; exceptions become ``isError``
results.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import IO, Any

from pydantic import BaseModel, ValidationError

from forgekit.engines.protocol import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    MCP_FLAG,
    METHOD_INITIALIZE,
    METHOD_INITIALIZED,
    METHOD_NOT_FOUND,
    METHOD_PING,
    METHOD_TOOLS_CALL,
    METHOD_TOOLS_LIST,
    PARSE_ERROR,
    PROTOCOL_VERSION,
    TOOL_BUILD,
    TOOL_BUILD_BATCH,
    TOOL_DETECT_DEPENDENCIES,
    TOOL_RUN,
    BatchBuildInput,
    BuildInput,
    DetectDependenciesInput,
    DetectDependenciesOutput,
    RpcError,
    RpcResponse,
    RunInput,
    ToolCallResult,
    decode_message,
    encode_message,
)
from forgekit.kernel.models import Artifact, ArtifactDependency, TestReport

_LOGGER = logging.getLogger(__name__)

ToolHandler = Callable[[Any], ToolCallResult]


@dataclass(frozen=True)
class _Tool:
    name: str
    description: str
    input_model: type[BaseModel]
    handler: ToolHandler


class EngineServer:
    """Minimal tools server speaking newline-delimited JSON-RPC."""

    def __init__(self, name: str, version: str = "dev") -> None:
        self.name = name
        self.version = version
        self._tools: dict[str, _Tool] = {}

    @property
    def tool_names(self) -> list[str]:
        return sorted(self._tools)

    def register_tool(
        self,
        name: str,
        description: str,
        input_model: type[BaseModel],
        handler: ToolHandler,
    ) -> None:
        """Register a tool; ``handler`` receives a validated ``input_model``.

        Raises:
            ValueError: If a tool with the same name is already registered.
        """
        if name in self._tools:
            raise ValueError(f"tool {name!r} already registered on {self.name}")
        self._tools[name] = _Tool(name, description, input_model, handler)

    def handle(self, message: dict[str, Any]) -> RpcResponse | None:
        """Dispatch one decoded message; None for notifications."""
        method = message.get("method")
        request_id = message.get("id")
        is_notification = "id" not in message
        if not isinstance(method, str):
            return _error(request_id, INVALID_REQUEST, "missing method")
        params = message.get("params") or {}
        if not isinstance(params, dict):
            return _error(request_id, INVALID_PARAMS, "params must be an object")

        if method == METHOD_INITIALIZE:
            result: dict[str, Any] = {
                "protocolVersion": params.get("protocolVersion", PROTOCOL_VERSION),
                "capabilities": {"tools": {}},
                "serverInfo": {"name": self.name, "version": self.version},
            }
        elif method == METHOD_TOOLS_LIST:
            result = {"tools": [_describe(tool) for tool in self._tools.values()]}
        elif method == METHOD_TOOLS_CALL:
            result = self._call_tool(params).to_wire()
        elif method == METHOD_PING:
            result = {}
        elif is_notification:
            if method != METHOD_INITIALIZED:
                _LOGGER.debug("ignoring notification %s", method)
            return None
        else:
            return _error(request_id, METHOD_NOT_FOUND, f"unknown method {method}")

        if is_notification:
            return None
        return RpcResponse(id=request_id, result=result)

    def _call_tool(self, params: dict[str, Any]) -> ToolCallResult:
        name = params.get("name")
        tool = self._tools.get(name) if isinstance(name, str) else None
        if tool is None:
            return ToolCallResult.error(f"unknown tool {name!r}")
        try:
            arguments = tool.input_model.model_validate(params.get("arguments") or {})
        except ValidationError as exc:
            return ToolCallResult.error(f"invalid arguments for {tool.name}: {exc}")
        try:
            return tool.handler(arguments)
        except Exception as exc:  # noqa: BLE001 - tool failures are reported, not raised
            _LOGGER.exception("tool %s failed", tool.name)
            return ToolCallResult.error(f"{tool.name} failed: {exc}")

    def serve(self, stdin: IO[str] | None = None, stdout: IO[str] | None = None) -> int:
        """Answer messages until stdin closes.

        Returns:
            Process exit code (0).
        """
        reader = stdin or sys.stdin
        writer = stdout or sys.stdout
        for line in reader:
            if not line.strip():
                continue
            message = decode_message(line)
            if message is None:
                response: RpcResponse | None = _error(None, PARSE_ERROR, "parse error")
            else:
                try:
                    response = self.handle(message)
                except Exception as exc:  # noqa: BLE001 - keep serving
                    _LOGGER.exception("request handling failed")
                    response = _error(message.get("id"), INTERNAL_ERROR, str(exc))
            if response is not None:
                writer.write(encode_message(response))
                writer.flush()
        return 0


def _error(request_id: Any, code: int, message: str) -> RpcResponse:
    return RpcResponse(id=request_id, error=RpcError(code=code, message=message))


def _describe(tool: _Tool) -> dict[str, Any]:
    return {
        "name": tool.name,
        "description": tool.description,
        "inputSchema": tool.input_model.model_json_schema(by_alias=True),
    }


def register_builder_tools(
    server: EngineServer,
    name: str,
    build_fn: Callable[[BuildInput], Artifact],
) -> None:
    """Register build and buildBatch backed by one single-artifact function.

    buildBatch stops at the first failing spec and reports it as the error.
    """

    def _build(spec: BuildInput) -> ToolCallResult:
        artifact = build_fn(spec)
        return ToolCallResult.ok(f"built {artifact.name}", artifact.to_wire())

    def _build_batch(batch: BatchBuildInput) -> ToolCallResult:
        artifacts: list[Artifact] = []
        for spec in batch.specs:
            try:
                artifacts.append(build_fn(spec))
            except Exception as exc:  # noqa: BLE001 - reported to the caller
                _LOGGER.exception("%s: build of %s failed", name, spec.name)
                return ToolCallResult.error(
                    f"build of {spec.name} failed: {exc}",
                    {"artifacts": [a.to_wire() for a in artifacts]},
                )
        return ToolCallResult.ok(
            f"built {len(artifacts)} artifact(s)",
            {"artifacts": [a.to_wire() for a in artifacts]},
        )

    server.register_tool(TOOL_BUILD, f"Build one artifact with {name}", BuildInput, _build)
    server.register_tool(
        TOOL_BUILD_BATCH,
        f"Build several artifacts with {name}",
        BatchBuildInput,
        _build_batch,
    )


def register_test_runner_tools(
    server: EngineServer,
    name: str,
    run_fn: Callable[[RunInput], TestReport],
) -> None:
    """Register the run tool. A failed test run is a report, not a tool error."""

    def _run(run_input: RunInput) -> ToolCallResult:
        report = run_fn(run_input)
        return ToolCallResult.ok(
            f"stage {report.stage} {report.status}", report.to_wire()
        )

    server.register_tool(TOOL_RUN, f"Run a test stage with {name}", RunInput, _run)


def register_detector_tools(
    server: EngineServer,
    name: str,
    detect_fn: Callable[[DetectDependenciesInput], list[ArtifactDependency]],
) -> None:
    """Register detectDependencies."""

    def _detect(request: DetectDependenciesInput) -> ToolCallResult:
        output = DetectDependenciesOutput(dependencies=detect_fn(request))
        return ToolCallResult.ok(
            f"detected {len(output.dependencies)} dependencies", output.to_wire()
        )

    server.register_tool(
        TOOL_DETECT_DEPENDENCIES,
        f"Detect build inputs with {name}",
        DetectDependenciesInput,
        _detect,
    )


def run_engine(server: EngineServer, argv: Sequence[str] | None = None) -> int:
    """Engine entry point: serve when started with --mcp, else print usage.

    Logs go to stderr; stdout carries protocol messages only.
    """
    args = list(sys.argv[1:] if argv is None else argv)
    if MCP_FLAG not in args:
        sys.stderr.write(
            f"{server.name} {server.version}: run with {MCP_FLAG} to serve "
            f"tools {', '.join(server.tool_names)}\n"
        )
        return 2
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=logging.INFO,
            stream=sys.stderr,
            format="%(levelname)s %(name)s: %(message)s",
        )
    return server.serve()
