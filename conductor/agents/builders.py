"""Builder agents for the models, API, realtime, quality and integration roles.

Each builder either runs its configured command for a task, or, in dry-run
mode, reports the artifacts it would produce for the task's phase.
"""

from typing import Dict, List

from conductor.core.models import AgentRole, AgentTask, AgentTaskResult

from .base import BaseAgent


class BuilderAgent(BaseAgent):
    """Runs a build command per task, or plans artifacts in dry-run mode."""

    planned_artifacts: Dict[int, List[str]] = {}

    def perform_task(self, task: AgentTask) -> AgentTaskResult:
        if self.command:
            result = self.run_task_command(task)
            return AgentTaskResult(
                success=result.success,
                output=result.stdout,
                error=result.error_message,
                duration_seconds=result.duration_seconds,
                metadata={"command": result.command, "exit_code": result.exit_code},
            )

        artifacts = self.planned_artifacts.get(task.phase, [])
        self.logger.info(
            "Dry run for %s: %d planned artifacts", task.milestone, len(artifacts)
        )
        return AgentTaskResult(
            success=True,
            output=f"{self.name} planned {len(artifacts)} artifacts for {task.milestone}",
            files_created=list(artifacts),
            metadata={"dry_run": True},
        )


class ModelsAgent(BuilderAgent):
    role = AgentRole.MODELS
    name = "Models Agent"
    description = "Creates data models, schemas and migrations"
    dependencies = ()
    base_duration = 120.0
    capabilities = {
        0: ["Create initial database schema", "Write migrations"],
        1: ["Create requirement models and interfaces"],
        2: ["Create link and traceability models"],
        3: ["Create presence models"],
    }
    planned_artifacts = {
        0: ["database/init.sql", "migrations/001_initial_schema.sql"],
        1: ["src/models/requirement.model.ts", "migrations/002_requirements.sql"],
        2: ["src/models/link.model.ts", "migrations/003_links.sql"],
        3: ["src/models/presence.model.ts"],
    }


class ApiAgent(BuilderAgent):
    role = AgentRole.API
    name = "API Agent"
    description = "Implements REST endpoints and services"
    dependencies = (AgentRole.MODELS,)
    base_duration = 180.0
    capabilities = {
        0: ["Implement health check endpoints"],
        1: ["Implement CRUD endpoints", "Generate unique ids", "Audit logging", "Versioning"],
        2: ["Bidirectional links", "Suspect link detection", "Traceability matrix"],
        3: ["Comment endpoints"],
        4: ["Review workflows", "Status transitions", "Quality metrics endpoints"],
        5: ["OAuth endpoints", "Rate limiting"],
    }
    planned_artifacts = {
        0: ["src/routes/health.routes.ts"],
        1: ["src/routes/requirements.routes.ts", "src/services/requirements.service.ts"],
        2: ["src/routes/links.routes.ts", "src/services/traceability.service.ts"],
        3: ["src/routes/comments.routes.ts"],
        4: ["src/routes/review.routes.ts", "src/services/quality.service.ts"],
        5: ["src/routes/auth.routes.ts", "src/middleware/rate-limiter.ts"],
    }


class RealtimeAgent(BuilderAgent):
    role = AgentRole.REALTIME
    name = "Realtime Agent"
    description = "Builds the WebSocket server, presence and live updates"
    dependencies = (AgentRole.MODELS, AgentRole.API)
    base_duration = 240.0
    capabilities = {
        3: ["WebSocket server", "Presence tracking", "Comment threading", "Live updates"],
    }
    planned_artifacts = {
        3: [
            "src/websocket/server.ts",
            "src/services/presence.service.ts",
            "src/websocket/handlers/comments.ts",
        ],
    }


class QualityAgent(BuilderAgent):
    role = AgentRole.QUALITY
    name = "Quality Agent"
    description = "Adds validation, review workflows and quality metrics"
    dependencies = (AgentRole.MODELS, AgentRole.API)
    base_duration = 150.0
    capabilities = {
        2: ["Suspect link analysis", "Coverage gap analysis"],
        4: ["NLP ambiguity detection", "Review workflows", "Quality metrics"],
        5: ["Security checks"],
    }
    planned_artifacts = {
        2: ["src/services/coverage.service.ts"],
        4: ["src/services/nlp.service.ts", "src/services/review.service.ts"],
        5: ["tests/security/security.test.ts"],
    }


class IntegrationAgent(BuilderAgent):
    role = AgentRole.INTEGRATION
    name = "Integration Agent"
    description = "Connects OAuth, Jira and Slack with rate limiting"
    dependencies = (AgentRole.MODELS, AgentRole.API, AgentRole.QUALITY)
    base_duration = 200.0
    capabilities = {
        5: ["OAuth 2.0 flow", "Jira import/export", "Slack notifications", "Rate limiting"],
    }
    planned_artifacts = {
        5: [
            "src/integrations/oauth.ts",
            "src/integrations/jira.service.ts",
            "src/integrations/slack.service.ts",
        ],
    }
