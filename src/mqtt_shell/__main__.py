"""Run mqtt-shell with ``python -m mqtt_shell``."""

from mqtt_shell.cli.app import app

if __name__ == "__main__":
    app()
