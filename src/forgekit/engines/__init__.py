"""Engines: reference resolution, the tool-call protocol, client and server sides."""

from forgekit.engines.caller import CancelToken, StructuredResult, invoke_tool
from forgekit.engines.capabilities import (
    Builder,
    DependencyDetector,
    Engine,
    EngineFactory,
    SubprocessEngine,
    TestRunner,
)
from forgekit.engines.detection import (
    DetectionOutcome,
    attach_dependencies,
    detect_dependencies,
)
from forgekit.engines.resolver import (
    EngineResolver,
    ResolvedEngine,
    normalize_engine_uri,
    parse_engine_uri,
)
from forgekit.engines.server import (
    EngineServer,
    register_builder_tools,
    register_detector_tools,
    register_test_runner_tools,
    run_engine,
)

__all__ = [
    "Builder",
    "CancelToken",
    "DependencyDetector",
    "DetectionOutcome",
    "Engine",
    "EngineFactory",
    "EngineResolver",
    "EngineServer",
    "ResolvedEngine",
    "StructuredResult",
    "SubprocessEngine",
    "TestRunner",
    "attach_dependencies",
    "detect_dependencies",
    "invoke_tool",
    "normalize_engine_uri",
    "parse_engine_uri",
    "register_builder_tools",
    "register_detector_tools",
    "register_test_runner_tools",
    "run_engine",
]
