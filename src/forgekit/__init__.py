"""forgekit: lazy, engine-based build and test orchestration."""
