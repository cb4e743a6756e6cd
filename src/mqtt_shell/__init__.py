"""mqtt-shell - pipe MQTT traffic through the tools you already know."""

__version__ = "0.1.0"

__all__ = ["__version__"]
