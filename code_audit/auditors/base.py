"""
Parameterized auditor.

One Auditor class serves every category; what differs per category (prompt
builder, temperature, static enrichment passes) is injected by the factory in
``code_audit.auditors``.
"""
import hashlib
import json
import logging
import re
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from ..core.config import AuditorSettings
from ..core.errors import NoAvailableModelError, OllamaUnavailableError
from ..core.types import (
    AuditCoverage,
    AuditIssue,
    AuditMetrics,
    AuditRequest,
    AuditResult,
    AuditSuggestions,
    AuditSummary,
    AuditType,
    CodeLocation,
    Priority,
    Severity,
    sort_issues,
)
from .metrics import CodeMetrics, analyze_code_metrics
from .prompts import AuditPrompt

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 200
MAX_TEXT_LENGTH = 1000
SNIPPET_CONTEXT_LINES = 2
DEFAULT_MAX_TOKENS = 2048

PromptBuilder = Callable[..., AuditPrompt]
PostProcessor = Callable[[List[AuditIssue], AuditRequest], List[AuditIssue]]

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*\})\s*```", re.DOTALL)
_LINE_REFERENCE = re.compile(r"line\s*(\d+)", re.IGNORECASE)


# =============================================================================
# RESPONSE PARSING
# =============================================================================

class RawIssue(BaseModel):
    """One issue as the model reported it, before normalization."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    line: int
    column: Optional[int] = None
    end_line: Optional[int] = Field(None, alias="endLine")
    end_column: Optional[int] = Field(None, alias="endColumn")
    severity: Optional[str] = None
    type: Optional[str] = None
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    suggestion: Optional[str] = None
    confidence: Optional[float] = None
    fixable: bool = False
    rule_id: Optional[str] = Field(None, alias="ruleId")
    documentation: Optional[str] = None
    impact: Optional[str] = None
    effort: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def lift_location(cls, data: Any) -> Any:
        # Models answer with either a flat "line" or a nested "location" object
        if isinstance(data, dict) and isinstance(data.get("location"), dict):
            location = data["location"]
            data = {**data}
            for key in ("line", "column", "endLine", "endColumn"):
                if data.get(key) is None and location.get(key) is not None:
                    data[key] = location[key]
        return data


@dataclass
class ParseError:
    """An issue entry that failed validation; logged and dropped."""
    index: int
    raw: Any
    reason: str


@dataclass
class ParsedResponse:
    issues: List[RawIssue] = field(default_factory=list)
    errors: List[ParseError] = field(default_factory=list)
    used_fallback: bool = False


def extract_json(text: str) -> Optional[Any]:
    """Pull the JSON payload out of the whole text, a fenced block or the outermost braces."""
    candidates = [text.strip()]
    fenced = _FENCED_JSON.search(text)
    if fenced:
        candidates.append(fenced.group(1))
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start:end + 1])

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    return None


def parse_issue(index: int, raw: Any) -> Union[RawIssue, ParseError]:
    try:
        return RawIssue.model_validate(raw)
    except ValidationError as e:
        reasons = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'issue'}: {err['msg']}" for err in e.errors()
        )
        return ParseError(index=index, raw=raw, reason=reasons)


def fallback_parse(text: str) -> List[RawIssue]:
    """Line scan for "line N" mentions when the response holds no JSON."""
    issues = []
    for response_line in text.split("\n"):
        match = _LINE_REFERENCE.search(response_line)
        if match and response_line.strip():
            issues.append(RawIssue(
                line=int(match.group(1)),
                severity=Severity.MEDIUM.value,
                type="parse_fallback",
                title="Issue detected (parsing fallback)",
                description=response_line.strip(),
                confidence=0.3,
            ))
    return issues


def parse_response(text: str) -> ParsedResponse:
    payload = extract_json(text)
    if isinstance(payload, dict):
        payload = payload.get("issues")
    if not isinstance(payload, list):
        logger.warning("No issue list found in model response, falling back to line scan")
        return ParsedResponse(issues=fallback_parse(text), used_fallback=True)

    parsed = ParsedResponse()
    for index, raw in enumerate(payload):
        outcome = parse_issue(index, raw)
        if isinstance(outcome, ParseError):
            logger.warning(f"Dropping malformed issue #{index}: {outcome.reason}")
            parsed.errors.append(outcome)
        else:
            parsed.issues.append(outcome)
    return parsed


# =============================================================================
# ISSUE HELPERS
# =============================================================================

def extract_snippet(code: str, line: int, context: int = SNIPPET_CONTEXT_LINES) -> str:
    lines = code.split("\n")
    start = max(0, line - context - 1)
    end = min(len(lines), line + context)
    return "\n".join(lines[start:end])


def issue_id(category: AuditType, line: int, issue_type: str, title: str) -> str:
    digest = hashlib.sha1(f"{category.value}:{line}:{issue_type}:{title}".encode()).hexdigest()
    return f"{category.value}-{digest[:12]}"


def normalize_severity(value: Optional[str]) -> Severity:
    try:
        return Severity((value or "").strip().lower())
    except ValueError:
        return Severity.MEDIUM


def make_issue(
    category: AuditType,
    code: str,
    line: int,
    severity: Severity,
    issue_type: str,
    title: str,
    description: str,
    suggestion: Optional[str] = None,
    confidence: float = 0.5,
    fixable: bool = False,
    rule_id: Optional[str] = None,
    effort: str = "medium",
) -> AuditIssue:
    """Build a statically detected issue with id and snippet filled in."""
    return AuditIssue(
        id=issue_id(category, line, issue_type, title),
        location=CodeLocation(line=line),
        severity=severity,
        type=issue_type,
        category=category,
        title=title,
        description=description,
        suggestion=suggestion,
        code_snippet=extract_snippet(code, line),
        confidence=confidence,
        fixable=fixable,
        rule_id=rule_id,
        effort=effort,
    )


def deduplicate_issues(issues: List[AuditIssue]) -> List[AuditIssue]:
    """Keep the first issue per (line, type); callers put model issues first."""
    seen = set()
    unique = []
    for issue in issues:
        key = (issue.location.line, issue.type)
        if key not in seen:
            seen.add(key)
            unique.append(issue)
    return unique


# =============================================================================
# AUDITOR
# =============================================================================

class Auditor:
    """Runs one audit category against the model and post-processes the answer."""

    def __init__(
        self,
        category: AuditType,
        settings: AuditorSettings,
        client,
        model_manager,
        prompt_builder: PromptBuilder,
        fast_prompt_builder: Optional[PromptBuilder] = None,
        post_processors: Optional[List[PostProcessor]] = None,
        temperature: float = 0.1,
    ):
        self.category = category
        self.settings = settings
        self.client = client
        self.model_manager = model_manager
        self.prompt_builder = prompt_builder
        self.fast_prompt_builder = fast_prompt_builder
        self.post_processors = post_processors or []
        self.temperature = temperature

    @property
    def enabled(self) -> bool:
        return self.settings.enabled

    def update_settings(self, updates: Dict[str, Any]) -> AuditorSettings:
        self.settings = self.settings.merged(updates)
        return self.settings

    async def _select_model(self, request: AuditRequest) -> str:
        available = self.client.get_available_models()
        if not available:
            # A cached "down" answer must not outlive a backend that came back
            await self.client.health_check(force=not self.client.is_healthy)
            available = self.client.get_available_models()
            if not available and not self.client.is_healthy:
                raise OllamaUnavailableError("Ollama service is not available")

        model = self.model_manager.select_model(
            self.category, request.language, request.priority, available
        )
        if not model:
            raise NoAvailableModelError(
                f"No suitable model available for {self.category.value} audit"
            )
        return model

    def _build_prompt(self, request: AuditRequest, metrics: CodeMetrics) -> AuditPrompt:
        builder = self.prompt_builder
        if Priority(request.priority) == Priority.FAST and self.fast_prompt_builder:
            builder = self.fast_prompt_builder
        return builder(self.category, request, metrics, self.settings.custom_prompts)

    async def audit(self, request: AuditRequest) -> AuditResult:
        started = time.perf_counter()
        code_metrics = analyze_code_metrics(request.code)
        model = await self._select_model(request)
        prompt = self._build_prompt(request, code_metrics)

        config = self.model_manager.get_model_config(model)
        generation = await self.client.generate(
            model=model,
            prompt=prompt.prompt,
            system=prompt.system,
            temperature=self.temperature,
            top_p=config.top_p if config else None,
            max_tokens=config.max_tokens if config else DEFAULT_MAX_TOKENS,
        )

        parse_started = time.perf_counter()
        parsed = parse_response(generation.text)
        issues = self._normalize_issues(parsed.issues, request)

        process_started = time.perf_counter()
        for post_process in self.post_processors:
            issues = post_process(issues, request)
        issues = self._filter_issues(issues, request)
        finished = time.perf_counter()

        logger.debug(
            f"{self.category.value} audit: {len(issues)} issues from {model} "
            f"({len(parsed.errors)} dropped, fallback={parsed.used_fallback})"
        )
        return AuditResult(
            request_id=str(uuid.uuid4()),
            issues=issues,
            summary=AuditSummary.from_issues(issues),
            coverage=AuditCoverage(
                lines_analyzed=code_metrics.line_count,
                functions_analyzed=code_metrics.function_count,
                classes_analyzed=code_metrics.class_count,
                complexity=code_metrics.complexity,
            ),
            suggestions=AuditSuggestions.from_issues(issues),
            metrics=AuditMetrics(
                duration=(finished - started) * 1000,
                model_response_time=generation.response_time_ms,
                parsing_time=(process_started - parse_started) * 1000,
                post_processing_time=(finished - process_started) * 1000,
                tokens_used=generation.tokens_used,
            ),
            model=model,
        )

    def _normalize_issues(self, raw_issues: List[RawIssue], request: AuditRequest) -> List[AuditIssue]:
        line_count = len(request.code.split("\n"))
        issues = []
        for raw in raw_issues:
            line = max(1, min(line_count, raw.line))
            issue_type = raw.type or "unknown"
            title = raw.title[:MAX_TITLE_LENGTH]
            confidence = 0.5 if raw.confidence is None else max(0.0, min(1.0, raw.confidence))
            issues.append(AuditIssue(
                id=issue_id(self.category, line, issue_type, title),
                location=CodeLocation(
                    line=line,
                    column=raw.column,
                    end_line=raw.end_line,
                    end_column=raw.end_column,
                ),
                severity=normalize_severity(raw.severity),
                type=issue_type,
                category=self.category,
                title=title,
                description=raw.description[:MAX_TEXT_LENGTH],
                suggestion=raw.suggestion[:MAX_TEXT_LENGTH] if raw.suggestion else None,
                code_snippet=extract_snippet(request.code, line),
                confidence=confidence,
                fixable=raw.fixable,
                rule_id=raw.rule_id,
                documentation=raw.documentation,
                impact=raw.impact,
                effort=raw.effort or "medium",
            ))
        return issues

    def _filter_issues(self, issues: List[AuditIssue], request: AuditRequest) -> List[AuditIssue]:
        allowed = set(self.settings.severity)
        rules = self.settings.rules
        kept = [
            issue for issue in issues
            if (not allowed or issue.severity.value in allowed)
            and rules.get(issue.rule_id or issue.type) is not False
        ]
        kept = sort_issues(kept)
        if request.max_issues and request.max_issues > 0:
            kept = kept[:request.max_issues]
        return kept
