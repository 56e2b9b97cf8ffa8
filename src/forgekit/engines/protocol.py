"""Engine wire format: newline-delimited JSON-RPC 2.0 with MCP-shaped tool calls.

One message per line on the engine's stdin/stdout. Engines write logs to
stderr only; stdout is reserved for protocol messages.
"""

from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from forgekit.kernel.models import ArtifactDependency

JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2025-06-18"
MCP_FLAG = "--mcp"

METHOD_INITIALIZE = "initialize"
METHOD_INITIALIZED = "notifications/initialized"
METHOD_TOOLS_LIST = "tools/list"
METHOD_TOOLS_CALL = "tools/call"
METHOD_PING = "ping"

TOOL_BUILD = "build"
TOOL_BUILD_BATCH = "buildBatch"
TOOL_RUN = "run"
TOOL_DETECT_DEPENDENCIES = "detectDependencies"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class RpcRequest(_WireModel):
    """JSON-RPC request, or a notification when ``id`` is None."""

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    id: int | str | None = None
    method: str
    params: dict[str, Any] = Field(default_factory=dict)


class RpcError(_WireModel):
    code: int
    message: str
    data: Any = None


class RpcResponse(_WireModel):
    """JSON-RPC response; exactly one of result/error is set."""

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    id: int | str | None = None
    result: dict[str, Any] | None = None
    error: RpcError | None = None


class TextContent(_WireModel):
    type: Literal["text"] = "text"
    text: str = ""


class ToolCallResult(_WireModel):
    """Result of tools/call: human text plus optional structured payload."""

    content: list[TextContent] = Field(default_factory=list)
    structured_content: Any = None
    is_error: bool = False

    @property
    def message(self) -> str:
        """Concatenated text content."""
        return "\n".join(item.text for item in self.content if item.text)

    @classmethod
    def ok(cls, message: str, payload: Any = None) -> ToolCallResult:
        return cls(content=[TextContent(text=message)], structured_content=payload)

    @classmethod
    def error(cls, message: str, payload: Any = None) -> ToolCallResult:
        return cls(
            content=[TextContent(text=message)],
            structured_content=payload,
            is_error=True,
        )


class BuildInput(_WireModel):
    """Arguments of the build tool: one artifact to produce."""

    name: str
    src: str = ""
    dest: str = ""
    engine: str = ""
    spec: dict[str, Any] = Field(default_factory=dict)
    tmp_dir: str = ""
    build_dir: str = ""
    root_dir: str = ""
    force: bool = False


class BatchBuildInput(_WireModel):
    specs: list[BuildInput] = Field(default_factory=list)


class RunInput(_WireModel):
    """Arguments of the run tool: one test-stage execution."""

    id: str
    stage: str
    name: str = ""
    tmp_dir: str = ""
    build_dir: str = ""
    root_dir: str = ""
    spec: dict[str, Any] = Field(default_factory=dict)


class DetectDependenciesInput(_WireModel):
    work_dir: str
    spec: dict[str, Any] = Field(default_factory=dict)


class DetectDependenciesOutput(_WireModel):
    dependencies: list[ArtifactDependency] = Field(default_factory=list)


def encode_message(message: BaseModel | dict[str, Any]) -> str:
    """Encode one protocol message as a single line (newline included)."""
    if isinstance(message, _WireModel):
        payload: dict[str, Any] = message.to_wire()
    elif isinstance(message, BaseModel):
        payload = message.model_dump(mode="json", by_alias=True)
    else:
        payload = message
    return json.dumps(payload, separators=(",", ":")) + "\n"


def decode_message(line: str) -> dict[str, Any] | None:
    """Decode one line into a JSON-RPC message, or None when it is not one.

    Engines sometimes print stray text to stdout; such lines are not errors
    here, the caller decides what to do with them.
    """
    text = line.strip()
    if not text:
        return None
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict) or payload.get("jsonrpc") != JSONRPC_VERSION:
        return None
    return payload
