"""Core modules for mqtt-shell."""

from .decorators import DecoratorPool
from .interpreter import Chain, Command, interpret_line
from .macros import MacroManager
from .pipeline import Pipeline, build_pipeline
from .processor import Processor

__all__ = ["Chain", "Command", "DecoratorPool", "MacroManager", "Pipeline", "Processor", "build_pipeline", "interpret_line"]
