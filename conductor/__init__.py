"""
Conductor: Phase-Gated Build Orchestrator

Drives a fixed sequence of numbered build phases, each made of milestones that
are backed by tasks dispatched to role-specific agents. Conductor decides what
work is eligible to run, validates exit criteria, advances or rolls back
phases, and recovers from agent failures with retries, circuit breakers and
checkpoints.
"""

__version__ = "0.1.0"
__author__ = "Conductor Team"
__email__ = "conductor@example.com"

from conductor.core.exceptions import ConductorError

__all__ = ["ConductorError", "__version__"]
