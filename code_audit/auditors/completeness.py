"""
Static completeness markers: TODO/FIXME/HACK comments and placeholder bodies.
"""
import logging
import re
from typing import List, Tuple

from ..core.types import AuditIssue, AuditRequest, AuditType, Severity
from .base import deduplicate_issues, make_issue

logger = logging.getLogger(__name__)

# Marker inside a line comment, block comment or HTML comment
_COMMENT = r"(?://|/\*|#|<!--).*\b{word}\b"

# (pattern, type, severity, rule id, title, suggestion)
MARKERS: List[Tuple[re.Pattern, str, Severity, str, str, str]] = [
    (re.compile(_COMMENT.format(word="TODO"), re.I), "todo_comment", Severity.MEDIUM, "COMP001",
     "TODO comment found", "Complete the implementation or track it in an issue"),
    (re.compile(_COMMENT.format(word="FIXME"), re.I), "fixme_comment", Severity.HIGH, "COMP002",
     "FIXME comment found", "Fix the known problem before shipping"),
    (re.compile(_COMMENT.format(word="HACK"), re.I), "hack_comment", Severity.MEDIUM, "COMP003",
     "HACK comment found", "Replace the workaround with a proper solution"),
]

PLACEHOLDER_PATTERNS = [
    re.compile(r"\braise\s+NotImplementedError\b"),
    re.compile(r"\bthrow\s+new\s+(?:Error\s*\(\s*['\"]not implemented|NotImplementedError)", re.I),
    re.compile(r"\bunimplemented!\s*\("),
    re.compile(r"\btodo!\s*\("),
    re.compile(r"panic\(\s*\"not implemented", re.I),
    re.compile(r"(?://|#)\s*placeholder\b", re.I),
]


def detect_completeness_markers(code: str) -> List[AuditIssue]:
    issues = []
    for index, line in enumerate(code.split("\n")):
        line_number = index + 1
        for pattern, issue_type, severity, rule_id, title, suggestion in MARKERS:
            if pattern.search(line):
                issues.append(make_issue(
                    AuditType.COMPLETENESS, code, line_number, severity, issue_type, title,
                    f"{title}: {line.strip()}",
                    suggestion=suggestion,
                    confidence=1.0,
                    rule_id=rule_id,
                    effort="low" if severity == Severity.MEDIUM else "medium",
                ))
        if any(p.search(line) for p in PLACEHOLDER_PATTERNS):
            issues.append(make_issue(
                AuditType.COMPLETENESS, code, line_number, Severity.HIGH,
                "placeholder_implementation",
                "Placeholder implementation found",
                f"Placeholder implementation: {line.strip()}",
                suggestion="Replace placeholder with actual implementation",
                confidence=0.9,
                rule_id="COMP006",
                effort="high",
            ))
    return issues


def apply_completeness_markers(issues: List[AuditIssue], request: AuditRequest) -> List[AuditIssue]:
    markers = detect_completeness_markers(request.code)
    logger.debug(f"Static completeness scan found {len(markers)} markers")
    return deduplicate_issues(list(issues) + markers)
