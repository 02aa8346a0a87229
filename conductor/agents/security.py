"""Security agent.

Scans design documents for known vulnerability patterns. Any finding turns
the task result into a security conflict, which pauses the workflow until a
human resolves it.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Pattern, Sequence

from conductor.core.models import (
    AgentRole,
    AgentTask,
    AgentTaskResult,
    ConflictFinding,
    ConflictMarker,
    Severity,
    highest_severity,
)

from .base import BaseAgent

SECURITY_CONFLICT = "SECURITY_CONFLICT"
CONFLICT_TYPE = "security_vulnerability"


@dataclass(frozen=True)
class VulnerabilityPattern:
    """A known vulnerability and the text pattern that reveals it."""

    id: str
    severity: Severity
    title: str
    description: str
    pattern: Pattern[str]
    recommendation: str
    category: str
    requires_human_input: bool = True


def _vuln(
    vuln_id: str,
    severity: Severity,
    title: str,
    description: str,
    pattern: str,
    recommendation: str,
    category: str,
    requires_human_input: bool = True,
) -> VulnerabilityPattern:
    return VulnerabilityPattern(
        id=vuln_id,
        severity=severity,
        title=title,
        description=description,
        pattern=re.compile(pattern, re.IGNORECASE),
        recommendation=recommendation,
        category=category,
        requires_human_input=requires_human_input,
    )


VULNERABILITY_PATTERNS: List[VulnerabilityPattern] = [
    _vuln(
        "VULN-001",
        Severity.HIGH,
        "Deprecated Crypto Library",
        "Use of a deprecated crypto library with known vulnerabilities",
        r"crypto[-_]?js\s*[<=]+\s*[0-3]\.\d+|deprecated\s+crypto|old\s+crypto\s+library",
        "Upgrade to crypto-js 4.0+ or use the platform's built-in crypto module",
        "crypto",
    ),
    _vuln(
        "VULN-002",
        Severity.CRITICAL,
        "Hardcoded API Credentials",
        "Credentials kept in environment files without proper secret management",
        r"\.env\s+files?|store\s+(api\s*keys?|credentials?|secrets?|passwords?)\s+in\s+\.env"
        r"|hardcoded\s+(api\s*keys?|credentials?|secrets?|passwords?)",
        "Use a secret manager such as Vault or a cloud secrets service",
        "authentication",
    ),
    _vuln(
        "VULN-003",
        Severity.CRITICAL,
        "SQL Injection Vulnerability",
        "User input concatenated directly into SQL queries",
        r"string\s+concatenation\s+(in|for)\s+sql|raw\s+sql\s+queries?|unsafe\s+sql"
        r"|(?<!prevent\s)sql\s+injection(?!\s+attacks)",
        "Use parameterized queries or prepared statements for all database access",
        "injection",
    ),
    _vuln(
        "VULN-004",
        Severity.HIGH,
        "Missing Input Validation",
        "Public endpoints accept input without validation",
        r"missing\s+validation|no\s+input\s+validation|without\s+validation|unvalidated\s+input",
        "Validate all user input at API boundaries",
        "validation",
    ),
    _vuln(
        "VULN-005",
        Severity.MEDIUM,
        "Weak Password Policy",
        "Password policy does not enforce sufficient complexity",
        r"weak\s+password|simple\s+password\s+policy|no\s+password\s+requirements?",
        "Require at least 12 characters mixing cases, digits and symbols",
        "authentication",
        requires_human_input=False,
    ),
    _vuln(
        "VULN-006",
        Severity.HIGH,
        "Insecure Direct Object Reference",
        "Resources can be accessed without authorization checks",
        r"\bidor\b|insecure\s+direct\s+object|unauthorized\s+access\s+to\s+resources?",
        "Check the caller's permissions on every resource access",
        "authentication",
    ),
    _vuln(
        "VULN-007",
        Severity.CRITICAL,
        "Cross-Site Scripting (XSS)",
        "Unescaped user content rendered as HTML",
        r"\bxss\b|cross[-\s]site\s+scripting|unescaped\s+html|dangerouslySetInnerHTML",
        "Sanitize user input, escape HTML and set a Content Security Policy",
        "injection",
    ),
    _vuln(
        "VULN-008",
        Severity.HIGH,
        "Sensitive Data Exposure",
        "Sensitive data written to logs, errors or API responses",
        r"logging\s+(passwords?|secrets?|tokens?|credentials?)|exposing\s+sensitive"
        r"|sensitive\s+data\s+in\s+(logs?|errors?)",
        "Never log sensitive data; mask it and return generic errors",
        "data-exposure",
    ),
    _vuln(
        "VULN-009",
        Severity.MEDIUM,
        "Insecure Deserialization",
        "Untrusted data deserialized without validation",
        r"insecure\s+deserialization|unsafe\s+deserialization|eval\s*\(|JSON\.parse\s+untrusted",
        "Validate serialized data before deserializing it",
        "injection",
    ),
    _vuln(
        "VULN-010",
        Severity.MEDIUM,
        "Insufficient Logging",
        "Security events are not logged or monitored",
        r"no\s+logging|insufficient\s+logging|missing\s+audit\s+trail",
        "Log authentication, authorization and other sensitive operations",
        "configuration",
        requires_human_input=False,
    ),
]


class SecurityAgent(BaseAgent):
    """Detects vulnerabilities in design documents and raises conflicts."""

    role = AgentRole.SECURITY
    name = "Security Agent"
    description = "Detects security vulnerabilities in engineering designs"
    dependencies = (AgentRole.MODELS, AgentRole.API)
    base_duration = 30.0
    phase_multipliers = {0: 0.2, 1: 0.3, 2: 0.4, 3: 0.6, 4: 2.0, 5: 0.8}
    capabilities = {
        3: ["Basic security validation", "Comment content scanning"],
        4: [
            "Security vulnerability detection",
            "Engineering design security analysis",
            "Conflict generation for security issues",
        ],
        5: ["Integration security validation", "API security verification"],
    }

    def __init__(
        self,
        design_docs: Sequence[str] = (),
        patterns: Optional[Iterable[VulnerabilityPattern]] = None,
        working_dir: Optional[Path] = None,
        **kwargs,
    ):
        """
        Args:
            design_docs: Glob patterns of documents to scan, relative to the
                working directory
            patterns: Vulnerability patterns (default: the built-in table)
        """
        super().__init__(working_dir=working_dir, **kwargs)
        self.design_docs = list(design_docs)
        self.patterns = list(patterns) if patterns is not None else list(VULNERABILITY_PATTERNS)
        self.working_dir = Path(working_dir) if working_dir else self.runner.working_dir

    def perform_task(self, task: AgentTask) -> AgentTaskResult:
        documents = self._collect_documents()
        if not documents:
            return AgentTaskResult(
                success=True,
                output="No design documents to scan",
                metadata={"vulnerabilities_detected": 0},
            )

        findings: List[ConflictFinding] = []
        for path, content in documents:
            for finding in self.scan(content, affected_module=self._affected_module(task, content)):
                if all(f.id != finding.id for f in findings):
                    findings.append(finding)
                    self.logger.warning(
                        "Detected %s (%s) in %s", finding.title, finding.severity.value, path
                    )

        scanned = [str(path) for path, _ in documents]
        if not findings:
            return AgentTaskResult(
                success=True,
                output="Security scan completed - no vulnerabilities detected",
                metadata={"scanned": scanned, "vulnerabilities_detected": 0},
            )

        severity = highest_severity(f.severity for f in findings)
        return AgentTaskResult(
            success=False,
            output=f"Security vulnerabilities detected: {len(findings)} issue(s) found",
            error=SECURITY_CONFLICT,
            conflict=ConflictMarker(
                conflict_type=CONFLICT_TYPE, severity=severity, findings=findings
            ),
            metadata={
                "conflict_type": CONFLICT_TYPE,
                "scanned": scanned,
                "vulnerabilities_detected": len(findings),
            },
        )

    def scan(self, content: str, affected_module: str = "engineering-design") -> List[ConflictFinding]:
        """Match content against every vulnerability pattern."""
        return [
            ConflictFinding(
                id=p.id,
                severity=p.severity,
                title=p.title,
                description=p.description,
                recommendation=p.recommendation,
                category=p.category,
                affected_module=affected_module,
                requires_human_input=p.requires_human_input,
            )
            for p in self.patterns
            if p.pattern.search(content)
        ]

    def _collect_documents(self) -> List[tuple]:
        documents = []
        for pattern in self.design_docs:
            for path in sorted(self.working_dir.glob(pattern)):
                if path.is_file():
                    documents.append((path, path.read_text(encoding="utf-8", errors="replace")))
        return documents

    @staticmethod
    def _affected_module(task: AgentTask, content: str) -> str:
        for text in (task.description.lower(), content.lower()):
            for module in ("authentication", "api", "database"):
                if module in text:
                    return module
        return "engineering-design"
