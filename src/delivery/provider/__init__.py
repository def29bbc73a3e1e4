"""Delivery provider adapters — pluggable provider integrations.

Provides get_registry() / set_registry() to swap the adapter registry:
the default one is built from the environment's engine settings.
"""

_registry_instance = None


def get_registry():
    """Return the process-wide adapter registry (singleton)."""
    global _registry_instance
    if _registry_instance is None:
        from delivery.config import EngineSettings
        from delivery.provider.registry import AdapterRegistry

        _registry_instance = AdapterRegistry(settings=EngineSettings.from_env())
    return _registry_instance


def set_registry(registry) -> None:
    """Override the active registry (useful for tests)."""
    global _registry_instance
    _registry_instance = registry


def reset_registry() -> None:
    """Reset to the default registry."""
    global _registry_instance
    _registry_instance = None
