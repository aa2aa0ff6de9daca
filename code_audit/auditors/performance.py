"""
Static performance pattern detection.

Regex heuristics that run next to the model: nested loops, queries inside
loops, blocking calls in async functions and similar. Findings are merged
with the model's, deduplicated by (line, type) and escalated one tier when
the caller marks the code performance-critical.
"""
import logging
import re
from dataclasses import dataclass, replace
from typing import Callable, List

from ..core.types import AuditIssue, AuditRequest, AuditType, Severity
from .base import deduplicate_issues, make_issue

logger = logging.getLogger(__name__)

JS_LANGUAGES = {"javascript", "typescript"}
LOOKAHEAD_LINES = 20
LOOKBEHIND_LINES = 10

BRACE_LOOP_PATTERNS = [
    re.compile(r"\bfor\s*\("),
    re.compile(r"\bwhile\s*\("),
    re.compile(r"\.forEach\s*\("),
    re.compile(r"\.map\s*\("),
    re.compile(r"\.filter\s*\("),
]
PYTHON_LOOP_PATTERN = re.compile(r"^\s*(?:async\s+)?(?:for|while)\b.*:\s*(?:#.*)?$")
ANY_LOOP_PATTERN = re.compile(r"\b(?:for|while|forEach)\b")

QUERY_PATTERNS = [
    re.compile(r"\.query\s*\("),
    re.compile(r"\.execute\s*\("),
    re.compile(r"\bSELECT\s+", re.I),
    re.compile(r"\bINSERT\s+", re.I),
    re.compile(r"\bUPDATE\s+", re.I),
    re.compile(r"\bDELETE\s+", re.I),
    re.compile(r"\.find\s*\("),
    re.compile(r"\.save\s*\("),
]
OBJECT_CREATION_PATTERNS = [
    re.compile(r"\bnew\s+\w+\s*\("),
    re.compile(r"\{\s*\w+:"),
    re.compile(r"\bObject\.create\b"),
]
SYNC_FS_PATTERN = re.compile(r"\bfs\.(?:readFileSync|writeFileSync|existsSync|statSync)\b")
CACHING_CANDIDATE_PATTERNS = [
    re.compile(r"\bMath\.(?:sin|cos|sqrt|pow)\b"),
    re.compile(r"\bJSON\.(?:parse|stringify)\b"),
    re.compile(r"\w+\.match\("),
    re.compile(r"\bfetch\("),
    re.compile(r"\baxios\."),
]
INEFFICIENT_ARRAY_PATTERNS = [
    re.compile(r"\.indexOf\s*\([^)]+\)\s*!==?\s*-1"),
    re.compile(r"\.splice\s*\(\s*0\s*,\s*1\s*\)"),
    re.compile(r"for\s*\(.*\.length\s*;"),
]
LEAK_PATTERNS = [
    re.compile(r"addEventListener\s*\((?!.*removeEventListener)"),
    re.compile(r"setInterval\s*\((?!.*clearInterval)"),
    re.compile(r"new\s+EventSource\s*\((?!.*close)"),
]
JS_BLOCKING_PATTERNS = [
    SYNC_FS_PATTERN,
    re.compile(r"while\s*\(\s*true\s*\)"),
]
PY_BLOCKING_PATTERNS = [
    re.compile(r"\btime\.sleep\s*\("),
    re.compile(r"\brequests\.(?:get|post|put|delete|patch)\s*\("),
    re.compile(r"\bsubprocess\.(?:run|call|check_output)\s*\("),
]
JS_ASYNC_PATTERN = re.compile(r"async\s+function|async\s*\(")
PY_ASYNC_PATTERN = re.compile(r"^\s*async\s+def\b")
DOM_PATTERNS = [
    re.compile(r"innerHTML\s*\+="),
    re.compile(r"document\.(?:getElementById|querySelector|createElement).*\bfor\b"),
]
STRING_CONCAT_PATTERN = re.compile(r"\w+\s*\+=\s*[\"'`]")


# =============================================================================
# DETECTORS
# =============================================================================

def _inside_loop(lines: List[str], index: int) -> bool:
    start = max(0, index - LOOKBEHIND_LINES)
    return any(ANY_LOOP_PATTERN.search(lines[i]) for i in range(start, index))


def _indent(line: str) -> int:
    return len(line) - len(line.lstrip())


def is_nested_loop(line: str, lines: List[str], index: int, language: str) -> bool:
    if language == "python":
        if not PYTHON_LOOP_PATTERN.match(line):
            return False
        outer = _indent(line)
        for current in lines[index + 1:index + LOOKAHEAD_LINES]:
            if not current.strip():
                continue
            if _indent(current) <= outer:
                return False
            if PYTHON_LOOP_PATTERN.match(current):
                return True
        return False

    if not any(p.search(line) for p in BRACE_LOOP_PATTERNS):
        return False
    depth = 0
    for current in lines[index + 1:index + LOOKAHEAD_LINES]:
        depth += current.count("{") - current.count("}")
        if depth < 0:
            return False
        if any(p.search(current) for p in BRACE_LOOP_PATTERNS):
            return True
    return False


def is_string_concat_in_loop(line, lines, index, language):
    return bool(STRING_CONCAT_PATTERN.search(line)) and _inside_loop(lines, index)


def is_query_in_loop(line, lines, index, language):
    return any(p.search(line) for p in QUERY_PATTERNS) and _inside_loop(lines, index)


def is_sync_file_operation(line, lines, index, language):
    return language in JS_LANGUAGES and bool(SYNC_FS_PATTERN.search(line))


def is_object_creation_in_loop(line, lines, index, language):
    return any(p.search(line) for p in OBJECT_CREATION_PATTERNS) and _inside_loop(lines, index)


def is_caching_candidate(line, lines, index, language):
    return any(p.search(line) for p in CACHING_CANDIDATE_PATTERNS)


def is_inefficient_array_operation(line, lines, index, language):
    return language in JS_LANGUAGES and any(p.search(line) for p in INEFFICIENT_ARRAY_PATTERNS)


def is_memory_leak_candidate(line, lines, index, language):
    return language in JS_LANGUAGES and any(p.search(line) for p in LEAK_PATTERNS)


def is_blocking_in_async(line, lines, index, language):
    if language in JS_LANGUAGES:
        blocking, async_marker = JS_BLOCKING_PATTERNS, JS_ASYNC_PATTERN
    elif language == "python":
        blocking, async_marker = PY_BLOCKING_PATTERNS, PY_ASYNC_PATTERN
    else:
        return False
    if not any(p.search(line) for p in blocking):
        return False
    start = max(0, index - LOOKAHEAD_LINES)
    return any(async_marker.search(lines[i]) for i in range(start, index))


def is_inefficient_dom_operation(line, lines, index, language):
    return language in JS_LANGUAGES and any(p.search(line) for p in DOM_PATTERNS)


@dataclass(frozen=True)
class PerformancePattern:
    rule_id: str
    type: str
    severity: Severity
    title: str
    description: str
    suggestion: str
    confidence: float
    effort: str
    detect: Callable[[str, List[str], int, str], bool]


PERFORMANCE_PATTERNS: List[PerformancePattern] = [
    PerformancePattern(
        "PERF001", "nested_loops", Severity.HIGH,
        "Nested loops detected (O(n^2) complexity)",
        "Nested loops can cause performance issues with large datasets",
        "Consider using maps, sets, or other data structures to reduce complexity",
        0.9, "medium", is_nested_loop,
    ),
    PerformancePattern(
        "PERF002", "inefficient_string_concatenation", Severity.MEDIUM,
        "Inefficient string concatenation",
        "String concatenation in loops can be slow",
        "Collect the parts and join them once after the loop",
        0.8, "low", is_string_concat_in_loop,
    ),
    PerformancePattern(
        "PERF003", "database_query_in_loop", Severity.CRITICAL,
        "Database query inside loop (N+1 problem)",
        "Running database queries in loops can severely impact performance",
        "Batch queries or use joins to fetch all data at once",
        0.9, "medium", is_query_in_loop,
    ),
    PerformancePattern(
        "PERF004", "synchronous_file_operation", Severity.MEDIUM,
        "Synchronous file operation blocks event loop",
        "Synchronous file operations can block the main thread",
        "Use asynchronous file operations instead",
        0.9, "low", is_sync_file_operation,
    ),
    PerformancePattern(
        "PERF005", "object_creation_in_loop", Severity.MEDIUM,
        "Object creation inside loop",
        "Creating objects in loops can cause garbage collection pressure",
        "Move object creation outside the loop or reuse instances",
        0.7, "medium", is_object_creation_in_loop,
    ),
    PerformancePattern(
        "PERF006", "missing_caching", Severity.LOW,
        "Expensive operation could benefit from caching",
        "Repetitive expensive operations should be cached",
        "Cache the result if this runs frequently with the same input",
        0.6, "medium", is_caching_candidate,
    ),
    PerformancePattern(
        "PERF007", "inefficient_array_operation", Severity.LOW,
        "Inefficient array operation",
        "Array operation could be optimized",
        "Use includes()/shift() or cache the array length",
        0.8, "low", is_inefficient_array_operation,
    ),
    PerformancePattern(
        "PERF008", "potential_memory_leak", Severity.HIGH,
        "Potential memory leak",
        "Event listener or timer without cleanup can cause memory leaks",
        "Add matching cleanup (removeEventListener, clearInterval, close)",
        0.7, "low", is_memory_leak_candidate,
    ),
    PerformancePattern(
        "PERF009", "blocking_operation_in_async", Severity.HIGH,
        "Blocking operation in async function",
        "Blocking operations stall every other task on the event loop",
        "Use the async equivalent or move the work to a thread pool",
        0.9, "medium", is_blocking_in_async,
    ),
    PerformancePattern(
        "PERF010", "inefficient_dom_operation", Severity.MEDIUM,
        "Inefficient DOM operation",
        "DOM operations in loops or repetitive queries can be slow",
        "Cache DOM elements, use document fragments, or batch DOM updates",
        0.8, "medium", is_inefficient_dom_operation,
    ),
]


# =============================================================================
# POST-PROCESSING
# =============================================================================

def detect_performance_patterns(code: str, language: str) -> List[AuditIssue]:
    language = language.lower()
    lines = code.split("\n")
    issues = []
    for index, line in enumerate(lines):
        for pattern in PERFORMANCE_PATTERNS:
            if pattern.detect(line, lines, index, language):
                issues.append(make_issue(
                    AuditType.PERFORMANCE,
                    code,
                    index + 1,
                    pattern.severity,
                    pattern.type,
                    pattern.title,
                    pattern.description,
                    suggestion=pattern.suggestion,
                    confidence=pattern.confidence,
                    fixable=True,
                    rule_id=pattern.rule_id,
                    effort=pattern.effort,
                ))
    return issues


def escalate_for_performance_critical(issues: List[AuditIssue]) -> List[AuditIssue]:
    """Low and medium move up one tier; every issue gets the impact note."""
    escalated = []
    for issue in issues:
        severity = issue.severity
        if severity in (Severity.LOW, Severity.MEDIUM):
            severity = severity.escalate()
        escalated.append(replace(
            issue,
            severity=severity,
            impact="Performance-critical code requires optimization",
        ))
    return escalated


def apply_performance_patterns(issues: List[AuditIssue], request: AuditRequest) -> List[AuditIssue]:
    static_issues = detect_performance_patterns(request.code, request.language)
    logger.debug(f"Static performance scan found {len(static_issues)} candidate issues")
    merged = deduplicate_issues(list(issues) + static_issues)
    if request.context and request.context.performance_critical:
        merged = escalate_for_performance_critical(merged)
    return merged
