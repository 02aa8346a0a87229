"""Role-specific agents that execute orchestrator tasks."""

from typing import Dict, Type

from conductor.core.models import AgentRole

from .base import Agent, AgentRegistry, BaseAgent
from .builders import (
    ApiAgent,
    BuilderAgent,
    IntegrationAgent,
    ModelsAgent,
    QualityAgent,
    RealtimeAgent,
)
from .security import VULNERABILITY_PATTERNS, SecurityAgent, VulnerabilityPattern
from .test_agent import TestAgent, parse_test_counts

AGENT_CLASSES: Dict[AgentRole, Type[BaseAgent]] = {
    AgentRole.MODELS: ModelsAgent,
    AgentRole.API: ApiAgent,
    AgentRole.TEST: TestAgent,
    AgentRole.REALTIME: RealtimeAgent,
    AgentRole.QUALITY: QualityAgent,
    AgentRole.INTEGRATION: IntegrationAgent,
    AgentRole.SECURITY: SecurityAgent,
}

__all__ = [
    # Contract
    "Agent",
    "BaseAgent",
    "AgentRegistry",
    "AGENT_CLASSES",
    # Builders
    "BuilderAgent",
    "ModelsAgent",
    "ApiAgent",
    "RealtimeAgent",
    "QualityAgent",
    "IntegrationAgent",
    # Test and security
    "TestAgent",
    "parse_test_counts",
    "SecurityAgent",
    "VulnerabilityPattern",
    "VULNERABILITY_PATTERNS",
]
