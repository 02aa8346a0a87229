"""Mock utilities for testing."""

from .agents import FakeExitTestRunner, ScriptedAgent
from .phases import milestone, phase

__all__ = [
    "FakeExitTestRunner",
    "ScriptedAgent",
    "milestone",
    "phase",
]
