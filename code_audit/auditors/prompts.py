"""
Prompt construction for the auditors.

The system prompt carries the auditor persona plus language, framework and
context guidance; the user prompt carries the response schema and the code.
"""
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..core.types import AuditContext, AuditRequest, AuditType
from .metrics import CodeMetrics

SYSTEM_PROMPTS: Dict[AuditType, str] = {
    AuditType.SECURITY: """You are a cybersecurity expert performing a code security audit. Identify security vulnerabilities, unsafe coding practices and potential attack vectors.

Focus on:
- OWASP Top 10 vulnerabilities (SQL injection, XSS, CSRF, etc.)
- Authentication and authorization flaws
- Input validation issues
- Cryptographic weaknesses
- Hardcoded secrets and credentials
- Unsafe deserialization
- Path traversal and command injection
- Memory safety issues where the language allows them
- Insecure dependencies and imports

Give specific, actionable recommendations with a severity for each finding.""",

    AuditType.COMPLETENESS: """You are a code reviewer who specializes in finding unfinished code. Identify placeholder content, missing implementation and gaps that will fail at runtime.

Focus on:
- TODO, FIXME and HACK comments
- Empty function bodies and placeholder implementations
- Missing error handling
- Unhandled edge cases and boundary conditions
- Missing input and output validation
- Incomplete conditional branches
- Unused variables and dead code
- Missing return statements
- Incomplete type definitions and required configuration

Flag anything that could cause runtime failures or unexpected behavior.""",

    AuditType.PERFORMANCE: """You are a performance engineer looking for bottlenecks and inefficiencies.

Focus on:
- Algorithmic complexity (O(n^2), O(n^3) hot spots)
- Memory management and potential leaks
- Database queries that could be batched or indexed
- Inefficient loops and redundant computation
- Blocking operations in async contexts
- Expensive operations without caching
- Large object creation inside loops
- String concatenation in loops
- Network and file I/O that could be reduced

Suggest concrete optimizations and estimate their impact.""",

    AuditType.QUALITY: """You are a code quality expert focused on maintainability, readability and established best practices.

Focus on:
- Code smells (long functions, large classes, duplication)
- SOLID violations
- Poor naming
- Complex conditionals and deep nesting
- Weak separation of concerns and tight coupling
- Missing or leaky abstractions
- Inconsistent style
- Magic numbers and hardcoded values
- Poor error handling patterns

Suggest refactorings that make the code easier to maintain.""",

    AuditType.ARCHITECTURE: """You are a software architect reviewing structure, boundaries and design patterns.

Focus on:
- Architectural anti-patterns
- Dependency direction and inversion
- Coupling and cohesion between components
- Layer separation
- Single responsibility and interface segregation
- Opportunities for factory, strategy, observer or builder patterns
- Dependency injection

Recommend structural improvements with clear reasoning.""",

    AuditType.TESTING: """You are a testing specialist looking for testability problems and coverage gaps.

Focus on:
- Hard-to-mock dependencies and hidden globals
- Edge cases that lack coverage
- Race conditions and non-deterministic behavior
- External dependencies leaking into unit tests
- Complex test setup and unclear assertions
- Test isolation problems
- Unit versus integration boundaries
- Property-based testing opportunities

Suggest testing strategies and changes that make the code testable.""",

    AuditType.DOCUMENTATION: """You are a technical writer reviewing code and API documentation.

Focus on:
- Missing API documentation
- Poor or misleading inline comments
- Undocumented configuration options
- Missing examples and usage patterns
- Undocumented error conditions
- Unclear function documentation and missing type information
- Undocumented assumptions and constraints

Suggest documentation improvements.""",

    AuditType.ALL: """You are a comprehensive code auditor with expertise in security, performance, quality, architecture, testing and documentation.

Analyze the code for:
1. Security vulnerabilities and unsafe practices
2. Incomplete implementations and missing error handling
3. Performance bottlenecks
4. Code quality and maintainability problems
5. Architectural issues
6. Testing gaps
7. Documentation deficiencies

Report the most severe findings first.""",
}

LANGUAGE_PROMPTS: Dict[str, Dict[AuditType, str]] = {
    "javascript": {
        AuditType.SECURITY: """Pay special attention to:
- Prototype pollution
- eval() and Function() usage
- DOM-based XSS
- Weak random number generation
- Sensitive data in localStorage""",
        AuditType.PERFORMANCE: """Focus on:
- Event loop blocking operations
- Event listeners that are never removed
- Inefficient DOM manipulation
- Sequential awaits that could run concurrently""",
    },
    "typescript": {
        AuditType.QUALITY: """Consider TypeScript-specific issues:
- any usage that defeats type safety
- Unsafe type assertions
- Unhandled union members
- Loose generic constraints""",
        AuditType.COMPLETENESS: """Look for:
- Missing type definitions
- Incomplete interface implementations
- Unhandled union cases
- Missing null and undefined checks""",
    },
    "python": {
        AuditType.SECURITY: """Focus on Python-specific issues:
- pickle, eval() and exec() on untrusted data
- Raw SQL built with string formatting
- Path traversal through os.path joins
- subprocess with shell=True
- yaml.load without a safe loader""",
        AuditType.PERFORMANCE: """Consider:
- GIL implications for CPU-bound work
- Comprehensions and generators over manual loops
- Repeated attribute lookups in hot loops
- Memory usage of large in-memory collections""",
    },
    "java": {
        AuditType.SECURITY: """Pay attention to:
- Deserialization vulnerabilities
- XML external entity (XXE) attacks
- LDAP injection
- Insecure random number generation
- Thread safety""",
        AuditType.ARCHITECTURE: """Consider:
- Thread-safe singletons
- Factory implementations
- Dependency injection opportunities
- Interface segregation""",
    },
    "go": {
        AuditType.SECURITY: """Focus on Go-specific issues:
- Data races between goroutines
- Channel deadlocks
- unsafe package usage
- Input validation in HTTP handlers""",
        AuditType.PERFORMANCE: """Consider:
- Goroutine leaks
- Channel buffer sizing
- Allocation patterns and GC pressure""",
    },
    "rust": {
        AuditType.SECURITY: """Focus on:
- unsafe blocks
- Integer overflow
- FFI boundaries""",
        AuditType.PERFORMANCE: """Consider:
- Unnecessary allocations and clones
- Iterator chains versus index loops
- Zero-cost abstraction violations""",
    },
}

FRAMEWORK_PROMPTS: Dict[str, Dict[AuditType, str]] = {
    "react": {
        AuditType.SECURITY: """React-specific concerns:
- XSS through dangerouslySetInnerHTML
- Unvalidated props reaching the DOM""",
        AuditType.PERFORMANCE: """React performance issues:
- Unnecessary re-renders
- Missing useMemo or useCallback
- Unstable key props""",
        AuditType.QUALITY: """React code quality:
- Hook dependency arrays
- Prop drilling
- State management patterns""",
    },
    "express": {
        AuditType.SECURITY: """Express concerns:
- Missing helmet middleware
- CORS misconfiguration
- Missing rate limiting
- Session security""",
        AuditType.PERFORMANCE: """Express performance:
- Middleware ordering
- Connection pooling
- Response compression and caching""",
    },
    "django": {
        AuditType.SECURITY: """Django concerns:
- CSRF exemptions
- Raw SQL queries
- Unescaped template output
- DEBUG and secret settings""",
        AuditType.ARCHITECTURE: """Django patterns:
- Fat views versus model methods
- Custom managers
- Signal handler sprawl""",
    },
    "fastapi": {
        AuditType.SECURITY: """FastAPI concerns:
- Missing dependency-based auth on routes
- Unvalidated request bodies
- CORS misconfiguration""",
        AuditType.PERFORMANCE: """FastAPI performance:
- Blocking calls inside async endpoints
- Missing connection pooling""",
    },
    "spring": {
        AuditType.SECURITY: """Spring concerns:
- Authentication configuration
- Authorization annotations
- Exposed actuator endpoints""",
        AuditType.ARCHITECTURE: """Spring patterns:
- Bean lifecycle
- Configuration management
- Injection style""",
    },
}

PROJECT_TYPE_GUIDANCE: Dict[str, str] = {
    "api": "API service - focus on security, performance and error handling",
    "web": "Web application - consider user experience and security",
    "cli": "Command-line tool - focus on error handling and user feedback",
    "library": "Reusable library - emphasize API design and documentation",
}

BASE_SEVERITY_GUIDELINES: Dict[str, str] = {
    "critical": "Immediate security risk or system failure potential",
    "high": "Significant impact on security, performance, or reliability",
    "medium": "Moderate impact on code quality or maintainability",
    "low": "Minor improvements or style issues",
    "info": "Informational suggestions or best practices",
}

SEVERITY_GUIDELINES: Dict[AuditType, Dict[str, str]] = {
    AuditType.SECURITY: {
        "critical": "Remote code execution, SQL injection, authentication bypass",
        "high": "XSS, CSRF, sensitive data exposure, authorization flaws",
        "medium": "Weak cryptography, input validation gaps, session management",
        "low": "Security headers, secure coding practices",
    },
    AuditType.PERFORMANCE: {
        "critical": "O(n^3) or worse complexity, memory leaks, infinite loops",
        "high": "O(n^2) complexity, blocking operations, large memory usage",
        "medium": "Suboptimal algorithms, unnecessary computations",
        "low": "Minor optimizations, caching opportunities",
    },
    AuditType.COMPLETENESS: {
        "critical": "Missing error handling that could crash the system",
        "high": "TODO comments in critical paths, incomplete implementations",
        "medium": "Missing edge case handling, incomplete validation",
        "low": "Minor TODOs, documentation gaps",
    },
    AuditType.QUALITY: {
        "high": "Poor code structure, major maintainability issues",
        "medium": "Style violations, moderate maintainability issues",
        "low": "Minor style issues",
    },
    AuditType.ARCHITECTURE: {
        "high": "Significant architectural violations, coupling issues",
        "medium": "Moderate design issues",
        "low": "Refactoring opportunities",
    },
    AuditType.TESTING: {
        "critical": "Missing tests for critical functionality",
        "high": "Insufficient coverage, missing integration tests",
        "medium": "Some missing unit tests, test quality issues",
        "low": "Additional edge cases",
    },
    AuditType.DOCUMENTATION: {
        "critical": "Missing critical API documentation",
        "high": "Complex functionality left undocumented",
        "medium": "Unclear comments, partial documentation",
        "low": "Minor documentation improvements",
    },
}

RESPONSE_SCHEMA = """{{
  "issues": [
    {{
      "line": number,
      "column": number (optional),
      "severity": "critical" | "high" | "medium" | "low" | "info",
      "type": "specific_issue_type",
      "category": "{category}",
      "title": "Brief description",
      "description": "Detailed explanation",
      "suggestion": "How to fix this issue",
      "confidence": 0.0-1.0,
      "fixable": boolean,
      "effort": "low" | "medium" | "high"
    }}
  ]
}}"""


@dataclass
class AuditPrompt:
    system: str
    prompt: str


def get_severity_guidelines(audit_type: AuditType) -> Dict[str, str]:
    return {**BASE_SEVERITY_GUIDELINES, **SEVERITY_GUIDELINES.get(audit_type, {})}


def _guidance_fragments(
    audit_types: List[AuditType], language: str, context: Optional[AuditContext]
) -> List[str]:
    fragments = []
    language_prompts = LANGUAGE_PROMPTS.get(language.lower(), {})
    framework_prompts = (
        FRAMEWORK_PROMPTS.get(context.framework.lower(), {})
        if context and context.framework
        else {}
    )
    for table in (language_prompts, framework_prompts):
        for audit_type in audit_types:
            if audit_type in table:
                fragments.append(table[audit_type])
    return fragments


def _context_lines(context: Optional[AuditContext]) -> List[str]:
    if context is None:
        return []
    lines = []
    if context.environment == "production":
        lines.append("- This is production code - prioritize security and reliability")
    if context.performance_critical:
        lines.append("- This is performance-critical code - focus on optimization opportunities")
    if context.team_size and context.team_size > 5:
        lines.append("- Large team environment - emphasize maintainability and documentation")
    if context.project_type in PROJECT_TYPE_GUIDANCE:
        lines.append(f"- {PROJECT_TYPE_GUIDANCE[context.project_type]}")
    if context.language_version:
        lines.append(f"- Target language version: {context.language_version}")
    return lines


def _code_block(language: str, code: str) -> str:
    return f"Code to analyze:\n```{language}\n{code}\n```"


def generate_prompt(
    audit_type: AuditType,
    request: AuditRequest,
    metrics: Optional[CodeMetrics] = None,
    custom_prompts: Optional[List[str]] = None,
) -> AuditPrompt:
    """Full single-category prompt."""
    sections = [SYSTEM_PROMPTS[audit_type]]
    sections.extend(_guidance_fragments([audit_type], request.language, request.context))
    sections.extend(custom_prompts or [])

    context_lines = _context_lines(request.context)
    if context_lines:
        sections.append("Context considerations:\n" + "\n".join(context_lines))

    guidelines = get_severity_guidelines(audit_type)
    sections.append(
        "Severity guidelines:\n"
        + "\n".join(f"- {level}: {text}" for level, text in guidelines.items())
    )
    system = "\n\n".join(sections)

    parts = []
    if metrics is not None:
        parts.append(
            "Code metrics:\n"
            f"- Lines of code: {metrics.line_count}\n"
            f"- Functions: {metrics.function_count}\n"
            f"- Complexity score: {metrics.complexity}"
        )
    parts.append(
        f"Analyze the following {request.language} code and return a JSON response "
        f"with the following structure:\n\n{RESPONSE_SCHEMA.format(category=audit_type.value)}"
    )
    parts.append(_code_block(request.language, request.code))
    parts.append(
        "Important:\n"
        "- Only return valid JSON\n"
        "- Be specific about line numbers\n"
        "- Provide actionable suggestions\n"
        "- Rate confidence honestly (0.0 = uncertain, 1.0 = very confident)\n"
        "- Focus on the most important issues for this audit type\n"
        "- Use severities that match the actual risk"
    )
    return AuditPrompt(system=system, prompt="\n\n".join(parts))


def generate_fast_mode_prompt(
    audit_type: AuditType,
    request: AuditRequest,
    metrics: Optional[CodeMetrics] = None,
    custom_prompts: Optional[List[str]] = None,
) -> AuditPrompt:
    """Combined security + completeness prompt asking for high-impact findings only.

    ``audit_type`` only sets the category the model is asked to tag issues with.
    """
    fast_types = [AuditType.SECURITY, AuditType.COMPLETENESS]
    sections = [SYSTEM_PROMPTS[t] for t in fast_types]
    sections.extend(_guidance_fragments(fast_types, request.language, request.context))
    sections.extend(custom_prompts or [])
    system = "\n\n".join(sections)

    prompt = "\n\n".join([
        "FAST MODE: Focus only on CRITICAL security vulnerabilities and obvious incomplete "
        "implementations that could cause immediate failures.",
        f"Analyze the following {request.language} code for:\n"
        "1. Critical security vulnerabilities (SQL injection, XSS, authentication bypass, etc.)\n"
        "2. Incomplete implementations (TODOs, empty functions, missing error handling)",
        "Return JSON with an issues array, high-impact problems only:\n\n"
        + RESPONSE_SCHEMA.format(category=audit_type.value),
        _code_block(request.language, request.code),
    ])
    return AuditPrompt(system=system, prompt=prompt)
