"""
Security enrichment pass.

Reclassifies model findings into well-known vulnerability types, attaches the
OWASP Top 10 category and tightens severity for production code.
"""
import logging
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Tuple

from ..core.types import AuditIssue, AuditRequest, Severity

logger = logging.getLogger(__name__)

SECURITY_TEMPERATURE = 0.05

# (type, rule id, description predicate, code-line keywords; empty means no line check)
Classifier = Tuple[str, str, Callable[[str], bool], Tuple[str, ...]]

CLASSIFIERS: List[Classifier] = [
    ("sql_injection", "SEC001",
     lambda d: "sql" in d or "injection" in d, ("query", "select", "insert")),
    ("xss_vulnerability", "SEC002",
     lambda d: "xss" in d or "cross-site" in d, ("innerhtml", "eval", "document.write")),
    ("hardcoded_secret", "SEC003",
     lambda d: "secret" in d or "password" in d or "key" in d, ("password", "apikey", "api_key", "secret")),
    ("authentication_flaw", "SEC004",
     lambda d: "auth" in d or "login" in d, ()),
    ("csrf_vulnerability", "SEC005",
     lambda d: "csrf" in d or "cross-site request" in d, ()),
    ("path_traversal", "SEC006",
     lambda d: "path" in d and "traversal" in d, ()),
    ("command_injection", "SEC007",
     lambda d: "command" in d and "injection" in d, ()),
    ("insecure_deserialization", "SEC008",
     lambda d: "deserial" in d or "pickle" in d or "unserialize" in d, ()),
]

OWASP_MAPPING: Dict[str, str] = {
    "sql_injection": "A03:2021 - Injection",
    "xss_vulnerability": "A03:2021 - Injection",
    "command_injection": "A03:2021 - Injection",
    "authentication_flaw": "A07:2021 - Identification and Authentication Failures",
    "csrf_vulnerability": "A01:2021 - Broken Access Control",
    "path_traversal": "A01:2021 - Broken Access Control",
    "hardcoded_secret": "A02:2021 - Cryptographic Failures",
    "insecure_deserialization": "A08:2021 - Software and Data Integrity Failures",
}

PRODUCTION_CRITICAL_TYPES = {"sql_injection", "command_injection", "authentication_flaw"}
PRODUCTION_HIGH_TYPES = {"xss_vulnerability", "csrf_vulnerability", "path_traversal"}


def _code_line(code: str, line: int) -> str:
    lines = code.split("\n")
    return lines[line - 1] if 0 < line <= len(lines) else ""


def classify_security_issue(issue: AuditIssue, code: str) -> AuditIssue:
    """Later classifiers win, so the most specific keyword match sticks."""
    description = issue.description.lower()
    line = _code_line(code, issue.location.line).lower()

    issue_type, rule_id = issue.type, issue.rule_id
    for candidate_type, candidate_rule, matches, line_keywords in CLASSIFIERS:
        if not matches(description):
            continue
        if line_keywords and not any(k in line for k in line_keywords):
            continue
        issue_type, rule_id = candidate_type, candidate_rule

    if issue_type == issue.type and rule_id == issue.rule_id:
        return issue
    logger.debug(f"Reclassified {issue.type} at line {issue.location.line} as {issue_type}")
    return replace(issue, type=issue_type, rule_id=rule_id)


def add_owasp_mapping(issue: AuditIssue) -> AuditIssue:
    category = OWASP_MAPPING.get(issue.type)
    if not category:
        return issue
    return replace(issue, documentation=f"OWASP Top 10: {category}")


def adjust_security_severity(issue: AuditIssue, environment: Optional[str]) -> AuditIssue:
    if issue.type == "hardcoded_secret":
        return replace(
            issue,
            severity=Severity.CRITICAL,
            impact="Credential exposure can lead to unauthorized access",
        )

    if environment == "production":
        if issue.type in PRODUCTION_CRITICAL_TYPES and issue.severity != Severity.CRITICAL:
            return replace(
                issue,
                severity=Severity.CRITICAL,
                impact="Critical security vulnerability in production environment",
            )
        if issue.type in PRODUCTION_HIGH_TYPES and issue.severity == Severity.MEDIUM:
            return replace(
                issue,
                severity=Severity.HIGH,
                impact="High-risk security vulnerability in production environment",
            )
    return issue


def enrich_security_issues(issues: List[AuditIssue], request: AuditRequest) -> List[AuditIssue]:
    environment = request.context.environment if request.context else None
    enriched = []
    for issue in issues:
        issue = classify_security_issue(issue, request.code)
        issue = add_owasp_mapping(issue)
        issue = adjust_security_severity(issue, environment)
        enriched.append(issue)
    return enriched
