"""forge.yaml configuration loading."""

from forgekit.config.forge_config import (
    BuildSpec,
    EngineAlias,
    EngineKind,
    EngineSettings,
    EngineStep,
    ForgeConfig,
    ForgeConfigError,
    ForgeSettings,
    StoreConfig,
    StoreSettings,
    TestStageSpec,
    load_forge_config,
    load_settings,
)

__all__ = [
    "BuildSpec",
    "EngineAlias",
    "EngineKind",
    "EngineSettings",
    "EngineStep",
    "ForgeConfig",
    "ForgeConfigError",
    "ForgeSettings",
    "StoreConfig",
    "StoreSettings",
    "TestStageSpec",
    "load_forge_config",
    "load_settings",
]
