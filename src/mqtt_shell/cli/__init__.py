"""Command line interface for mqtt-shell."""

from .app import app
from .render import Renderer, ShellCompleter

__all__ = ["Renderer", "ShellCompleter", "app"]
