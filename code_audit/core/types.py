"""
Core data model for the code audit server.

Requests, issues and results travel through the orchestrator as dataclasses;
the transport layers convert them to and from camelCase JSON with
``from_dict`` / ``to_dict``.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class AuditType(str, Enum):
    SECURITY = "security"
    COMPLETENESS = "completeness"
    PERFORMANCE = "performance"
    QUALITY = "quality"
    ARCHITECTURE = "architecture"
    TESTING = "testing"
    DOCUMENTATION = "documentation"
    ALL = "all"


# Declared category order; "all" fan-out runs auditors in this order.
AUDIT_CATEGORIES: List[AuditType] = [
    AuditType.SECURITY,
    AuditType.COMPLETENESS,
    AuditType.PERFORMANCE,
    AuditType.QUALITY,
    AuditType.ARCHITECTURE,
    AuditType.TESTING,
    AuditType.DOCUMENTATION,
]

FAST_MODE_CATEGORIES: List[AuditType] = [AuditType.SECURITY, AuditType.COMPLETENESS]


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"

    @property
    def rank(self) -> int:
        return SEVERITY_ORDER[self]

    def escalate(self) -> "Severity":
        """One tier up, saturating at critical."""
        return SEVERITIES[max(0, self.rank - 1)]


SEVERITIES: List[Severity] = [
    Severity.CRITICAL,
    Severity.HIGH,
    Severity.MEDIUM,
    Severity.LOW,
    Severity.INFO,
]
SEVERITY_ORDER: Dict[Severity, int] = {s: i for i, s in enumerate(SEVERITIES)}


class Priority(str, Enum):
    FAST = "fast"
    THOROUGH = "thorough"


MAX_CODE_SIZE = 100_000
RESULT_FORMAT_VERSION = "1.0.0"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _drop_none(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


# =============================================================================
# REQUEST
# =============================================================================

@dataclass
class AuditContext:
    """Optional caller-supplied hints about the code under audit."""
    framework: Optional[str] = None
    environment: Optional[str] = None  # production, development, testing
    performance_critical: bool = False
    team_size: Optional[int] = None
    project_type: Optional[str] = None
    language_version: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["AuditContext"]:
        if not data:
            return None
        return cls(
            framework=data.get("framework"),
            environment=data.get("environment"),
            performance_critical=bool(
                data.get("performanceCritical", data.get("performance_critical", False))
            ),
            team_size=data.get("teamSize", data.get("team_size")),
            project_type=data.get("projectType", data.get("project_type")),
            language_version=data.get("languageVersion", data.get("language_version")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "framework": self.framework,
            "environment": self.environment,
            "performanceCritical": self.performance_critical,
            "teamSize": self.team_size,
            "projectType": self.project_type,
            "languageVersion": self.language_version,
        })


@dataclass
class AuditRequest:
    code: str
    language: str
    audit_type: str = AuditType.ALL.value
    file: Optional[str] = None
    context: Optional[AuditContext] = None
    priority: str = Priority.THOROUGH.value
    max_issues: Optional[int] = None
    include_fix_suggestions: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditRequest":
        """Build a request from MCP tool arguments (camelCase or snake_case).

        Values are taken as-is; semantic validation happens in the orchestrator.
        """
        audit_type = data.get("auditType", data.get("audit_type")) or AuditType.ALL.value
        priority = data.get("priority") or Priority.THOROUGH.value
        max_issues = data.get("maxIssues", data.get("max_issues"))
        return cls(
            code=data.get("code") or "",
            language=data.get("language") or "",
            audit_type=audit_type.value if isinstance(audit_type, Enum) else str(audit_type),
            file=data.get("file"),
            context=AuditContext.from_dict(data.get("context")),
            priority=priority.value if isinstance(priority, Enum) else str(priority),
            max_issues=int(max_issues) if max_issues is not None else None,
            include_fix_suggestions=bool(
                data.get("includeFixSuggestions", data.get("include_fix_suggestions", True))
            ),
        )

    def for_category(self, category: AuditType, priority: Optional[str] = None) -> "AuditRequest":
        return replace(self, audit_type=category.value, priority=priority or self.priority)


# =============================================================================
# ISSUES
# =============================================================================

@dataclass(frozen=True)
class CodeLocation:
    line: int
    column: Optional[int] = None
    end_line: Optional[int] = None
    end_column: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "line": self.line,
            "column": self.column,
            "endLine": self.end_line,
            "endColumn": self.end_column,
        })


@dataclass(frozen=True)
class AuditIssue:
    """A single finding. Frozen: enrichment passes use ``dataclasses.replace``."""
    id: str
    location: CodeLocation
    severity: Severity
    type: str
    category: AuditType
    title: str
    description: str
    suggestion: Optional[str] = None
    code_snippet: Optional[str] = None
    confidence: float = 0.5
    fixable: bool = False
    rule_id: Optional[str] = None
    documentation: Optional[str] = None
    impact: Optional[str] = None
    effort: Optional[str] = None  # low, medium, high

    @property
    def line(self) -> int:
        return self.location.line

    def sort_key(self):
        return (self.severity.rank, self.location.line)

    def to_dict(self, include_suggestion: bool = True) -> Dict[str, Any]:
        return _drop_none({
            "id": self.id,
            "location": self.location.to_dict(),
            "severity": self.severity.value,
            "type": self.type,
            "category": self.category.value,
            "title": self.title,
            "description": self.description,
            "suggestion": self.suggestion if include_suggestion else None,
            "codeSnippet": self.code_snippet,
            "confidence": self.confidence,
            "fixable": self.fixable,
            "ruleId": self.rule_id,
            "documentation": self.documentation,
            "impact": self.impact,
            "effort": self.effort,
        })


def sort_issues(issues: List[AuditIssue]) -> List[AuditIssue]:
    """Severity (critical first), then line ascending. Stable."""
    return sorted(issues, key=AuditIssue.sort_key)


# =============================================================================
# RESULT
# =============================================================================

@dataclass
class AuditSummary:
    total: int = 0
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    info: int = 0
    by_category: Dict[str, int] = field(default_factory=dict)
    by_type: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_issues(cls, issues: List[AuditIssue]) -> "AuditSummary":
        summary = cls(total=len(issues))
        for issue in issues:
            setattr(summary, issue.severity.value, getattr(summary, issue.severity.value) + 1)
            category = issue.category.value
            summary.by_category[category] = summary.by_category.get(category, 0) + 1
            summary.by_type[issue.type] = summary.by_type.get(issue.type, 0) + 1
        return summary

    def add(self, other: "AuditSummary") -> None:
        self.total += other.total
        for severity in SEVERITIES:
            name = severity.value
            setattr(self, name, getattr(self, name) + getattr(other, name))
        for category, count in other.by_category.items():
            self.by_category[category] = self.by_category.get(category, 0) + count
        for issue_type, count in other.by_type.items():
            self.by_type[issue_type] = self.by_type.get(issue_type, 0) + count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "critical": self.critical,
            "high": self.high,
            "medium": self.medium,
            "low": self.low,
            "info": self.info,
            "byCategory": dict(self.by_category),
            "byType": dict(self.by_type),
        }


@dataclass
class AuditCoverage:
    lines_analyzed: int = 0
    functions_analyzed: int = 0
    classes_analyzed: int = 0
    complexity: float = 0

    def take_max(self, other: "AuditCoverage") -> None:
        self.lines_analyzed = max(self.lines_analyzed, other.lines_analyzed)
        self.functions_analyzed = max(self.functions_analyzed, other.functions_analyzed)
        self.classes_analyzed = max(self.classes_analyzed, other.classes_analyzed)
        self.complexity = max(self.complexity, other.complexity)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "linesAnalyzed": self.lines_analyzed,
            "functionsAnalyzed": self.functions_analyzed,
            "classesAnalyzed": self.classes_analyzed,
            "complexity": self.complexity,
        }


@dataclass
class AuditSuggestions:
    """Filtered views over a result's issue list."""
    auto_fixable: List[AuditIssue] = field(default_factory=list)
    priority_fixes: List[AuditIssue] = field(default_factory=list)
    quick_wins: List[AuditIssue] = field(default_factory=list)
    technical_debt: List[AuditIssue] = field(default_factory=list)

    BUCKETS = ("auto_fixable", "priority_fixes", "quick_wins", "technical_debt")

    @classmethod
    def from_issues(cls, issues: List[AuditIssue]) -> "AuditSuggestions":
        return cls(
            auto_fixable=[i for i in issues if i.fixable],
            priority_fixes=[
                i for i in issues if i.severity in (Severity.CRITICAL, Severity.HIGH)
            ],
            quick_wins=[
                i for i in issues
                if i.effort == "low" and i.severity in (Severity.MEDIUM, Severity.HIGH)
            ],
            technical_debt=[
                i for i in issues
                if i.category in (AuditType.QUALITY, AuditType.ARCHITECTURE)
            ],
        )

    def extend(self, other: "AuditSuggestions") -> None:
        for bucket in self.BUCKETS:
            getattr(self, bucket).extend(getattr(other, bucket))

    def restrict_to(self, issues: List[AuditIssue]) -> None:
        keep = {id(issue) for issue in issues}
        for bucket in self.BUCKETS:
            setattr(self, bucket, [i for i in getattr(self, bucket) if id(i) in keep])

    def to_dict(self, include_suggestion: bool = True) -> Dict[str, Any]:
        return {
            "autoFixable": [i.to_dict(include_suggestion) for i in self.auto_fixable],
            "priorityFixes": [i.to_dict(include_suggestion) for i in self.priority_fixes],
            "quickWins": [i.to_dict(include_suggestion) for i in self.quick_wins],
            "technicalDebt": [i.to_dict(include_suggestion) for i in self.technical_debt],
        }


@dataclass
class AuditMetrics:
    """Timings in milliseconds."""
    duration: float = 0
    model_response_time: float = 0
    parsing_time: float = 0
    post_processing_time: float = 0
    tokens_used: Optional[int] = None

    def add(self, other: "AuditMetrics") -> None:
        self.duration += other.duration
        self.model_response_time += other.model_response_time
        self.parsing_time += other.parsing_time
        self.post_processing_time += other.post_processing_time
        if other.tokens_used is not None:
            self.tokens_used = (self.tokens_used or 0) + other.tokens_used

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "duration": round(self.duration, 3),
            "modelResponseTime": round(self.model_response_time, 3),
            "parsingTime": round(self.parsing_time, 3),
            "postProcessingTime": round(self.post_processing_time, 3),
            "tokensUsed": self.tokens_used,
        })


@dataclass
class AuditResult:
    request_id: str
    issues: List[AuditIssue] = field(default_factory=list)
    summary: AuditSummary = field(default_factory=AuditSummary)
    coverage: AuditCoverage = field(default_factory=AuditCoverage)
    suggestions: AuditSuggestions = field(default_factory=AuditSuggestions)
    metrics: AuditMetrics = field(default_factory=AuditMetrics)
    model: str = "none"
    timestamp: str = field(default_factory=utc_now)
    version: str = RESULT_FORMAT_VERSION

    def to_dict(self, include_suggestions: bool = True) -> Dict[str, Any]:
        return {
            "requestId": self.request_id,
            "issues": [i.to_dict(include_suggestions) for i in self.issues],
            "summary": self.summary.to_dict(),
            "coverage": self.coverage.to_dict(),
            "suggestions": self.suggestions.to_dict(include_suggestions),
            "metrics": self.metrics.to_dict(),
            "model": self.model,
            "timestamp": self.timestamp,
            "version": self.version,
        }


# =============================================================================
# MODELS
# =============================================================================

@dataclass
class ModelPerformance:
    speed: str = "medium"          # fast, medium, slow
    accuracy: str = "medium"       # high, medium, low
    resource_usage: str = "medium"  # low, medium, high

    def to_dict(self) -> Dict[str, Any]:
        return {
            "speed": self.speed,
            "accuracy": self.accuracy,
            "resourceUsage": self.resource_usage,
        }


@dataclass
class ModelConfig:
    name: str
    display_name: str
    specialization: List[AuditType] = field(default_factory=list)
    max_tokens: int = 4096
    temperature: float = 0.1
    top_p: Optional[float] = None
    fallback_models: List[str] = field(default_factory=list)
    performance: ModelPerformance = field(default_factory=ModelPerformance)

    def merged(self, updates: Dict[str, Any]) -> "ModelConfig":
        """Return a copy with the given partial fields applied."""
        changes = dict(updates)
        if "specialization" in changes:
            changes["specialization"] = [AuditType(s) for s in changes["specialization"]]
        if isinstance(changes.get("performance"), dict):
            perf = changes["performance"]
            changes["performance"] = ModelPerformance(
                speed=perf.get("speed", self.performance.speed),
                accuracy=perf.get("accuracy", self.performance.accuracy),
                resource_usage=perf.get(
                    "resourceUsage", perf.get("resource_usage", self.performance.resource_usage)
                ),
            )
        aliases = {
            "displayName": "display_name",
            "maxTokens": "max_tokens",
            "topP": "top_p",
            "fallbackModels": "fallback_models",
        }
        for camel, snake in aliases.items():
            if camel in changes:
                changes[snake] = changes.pop(camel)
        known = {f for f in self.__dataclass_fields__}
        return replace(self, **{k: v for k, v in changes.items() if k in known and k != "name"})

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "name": self.name,
            "displayName": self.display_name,
            "specialization": [s.value for s in self.specialization],
            "maxTokens": self.max_tokens,
            "temperature": self.temperature,
            "topP": self.top_p,
            "fallbackModels": list(self.fallback_models),
            "performance": self.performance.to_dict(),
        })


@dataclass
class ModelMetrics:
    """Running counters for one model. Durations in milliseconds."""
    requests: int = 0
    failures: int = 0
    total_duration: float = 0
    avg_response_time: float = 0
    last_used: Optional[str] = None

    @property
    def success_rate(self) -> float:
        if self.requests == 0:
            return 0.0
        return (self.requests - self.failures) / self.requests

    @property
    def average_duration(self) -> float:
        return self.total_duration / self.requests if self.requests else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "requests": self.requests,
            "failures": self.failures,
            "totalDuration": round(self.total_duration, 3),
            "avgResponseTime": round(self.avg_response_time, 3),
            "averageDuration": round(self.average_duration, 3),
            "successRate": round(self.success_rate, 4),
            "lastUsed": self.last_used,
        }


@dataclass
class GenerationResult:
    """Text returned by the backend plus its timing metadata."""
    text: str
    model: str
    created_at: Optional[str] = None
    done: bool = True
    total_duration: Optional[int] = None
    load_duration: Optional[int] = None
    prompt_eval_count: Optional[int] = None
    eval_count: Optional[int] = None
    eval_duration: Optional[int] = None
    response_time_ms: float = 0

    @property
    def tokens_used(self) -> Optional[int]:
        if self.prompt_eval_count is None and self.eval_count is None:
            return None
        return (self.prompt_eval_count or 0) + (self.eval_count or 0)


@dataclass
class HealthCheckResult:
    status: str  # healthy, degraded, unhealthy
    checks: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_now)
    uptime: float = 0
    version: str = RESULT_FORMAT_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "checks": self.checks,
            "timestamp": self.timestamp,
            "uptime": round(self.uptime, 3),
            "version": self.version,
        }
