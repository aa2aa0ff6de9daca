"""
Tests for auditors: response parsing, normalization, static enrichment
passes and settings-based filtering.
"""
import pytest

from code_audit.auditors import create_auditor, get_supported_audit_types
from code_audit.auditors.base import (
    extract_json,
    make_issue,
    parse_response,
)
from code_audit.auditors.completeness import detect_completeness_markers
from code_audit.auditors.metrics import analyze_code_metrics
from code_audit.auditors.performance import (
    apply_performance_patterns,
    detect_performance_patterns,
    escalate_for_performance_critical,
)
from code_audit.auditors.prompts import generate_fast_mode_prompt, generate_prompt
from code_audit.auditors.security import enrich_security_issues
from code_audit.core.config import AuditorSettings
from code_audit.core.errors import NoAvailableModelError, OllamaUnavailableError
from code_audit.core.types import AuditContext, AuditRequest, AuditType, Severity
from code_audit.llm.selector import ModelManager
from conftest import (
    SAMPLE_PYTHON,
    StubOllamaClient,
    generation,
    issues_response,
    make_raw_issue,
)

NESTED_LOOPS = """def pairs(items):
    for a in items:
        for b in items:
            print(a, b)
"""


def _auditor(audit_type=AuditType.QUALITY, client=None, **settings):
    settings.setdefault("severity", [])
    return create_auditor(
        audit_type, AuditorSettings(**settings), client or StubOllamaClient(), ModelManager()
    )


def _request(code=SAMPLE_PYTHON, **overrides):
    return AuditRequest(code=code, language="python", audit_type="quality", **overrides)


# =============================================================================
# PARSING
# =============================================================================


class TestParsing:
    def test_extract_from_fenced_block(self):
        assert extract_json('Here you go:\n```json\n{"issues": []}\n```\nDone.') == {"issues": []}

    def test_extract_from_bare_braces(self):
        assert extract_json('Sure! {"issues": [{"line": 1}]} hope that helps') == {"issues": [{"line": 1}]}

    def test_extract_nothing(self):
        assert extract_json("no json here") is None

    def test_malformed_entries_are_dropped(self):
        parsed = parse_response(issues_response(
            make_raw_issue(line=1),
            {"line": 2, "description": "missing title"},
            {"title": "no line", "description": "x"},
        ))

        assert [i.line for i in parsed.issues] == [1]
        assert [e.index for e in parsed.errors] == [1, 2]
        assert parsed.used_fallback is False

    def test_nested_location_is_lifted(self):
        parsed = parse_response(issues_response({
            "location": {"line": 4, "column": 2, "endLine": 5},
            "title": "t",
            "description": "d",
            "ruleId": "R1",
        }))

        issue = parsed.issues[0]
        assert (issue.line, issue.column, issue.end_line) == (4, 2, 5)
        assert issue.rule_id == "R1"

    def test_bare_list_is_accepted(self):
        parsed = parse_response('[{"line": 1, "title": "t", "description": "d"}]')

        assert parsed.used_fallback is False
        assert len(parsed.issues) == 1

    def test_fallback_line_scan(self):
        parsed = parse_response("Problem on line 3: unused variable\nAll good otherwise")

        assert parsed.used_fallback is True
        assert len(parsed.issues) == 1
        issue = parsed.issues[0]
        assert issue.line == 3
        assert issue.type == "parse_fallback"
        assert issue.confidence == 0.3


# =============================================================================
# AUDITOR
# =============================================================================


class TestAuditor:
    @pytest.mark.asyncio
    async def test_normalizes_model_output(self):
        client = StubOllamaClient()
        client.generate.return_value = generation(issues_response(make_raw_issue(
            line=999,
            severity="SEVERE",
            confidence=7,
            title="x" * 300,
            effort=None,
        )))

        result = await _auditor(client=client).audit(_request())

        issue = result.issues[0]
        assert issue.line == len(SAMPLE_PYTHON.split("\n"))
        assert issue.severity == Severity.MEDIUM
        assert issue.confidence == 1.0
        assert len(issue.title) == 200
        assert issue.effort == "medium"
        assert issue.category == AuditType.QUALITY
        assert issue.id.startswith("quality-")
        assert issue.code_snippet

    @pytest.mark.asyncio
    async def test_result_shape(self):
        client = StubOllamaClient()
        client.generate.return_value = generation(issues_response(
            make_raw_issue(line=1, severity="high", fixable=True),
            make_raw_issue(line=2, severity="low", type="naming"),
        ))

        result = await _auditor(client=client).audit(_request())

        assert result.summary.total == 2
        assert result.summary.by_type == {"logic_error": 1, "naming": 1}
        assert result.coverage.lines_analyzed == 7
        assert result.coverage.functions_analyzed == 2
        assert len(result.suggestions.auto_fixable) == 1
        assert len(result.suggestions.technical_debt) == 2
        assert result.metrics.tokens_used == 150
        assert result.model in client.available_models

    @pytest.mark.asyncio
    async def test_severity_filter_and_rules(self):
        client = StubOllamaClient()
        client.generate.return_value = generation(issues_response(
            make_raw_issue(line=1, severity="critical"),
            make_raw_issue(line=2, severity="low"),
            make_raw_issue(line=3, severity="high", type="naming"),
        ))
        auditor = _auditor(client=client, severity=["critical", "high"], rules={"naming": False})

        result = await auditor.audit(_request())

        assert [(i.severity, i.line) for i in result.issues] == [(Severity.CRITICAL, 1)]

    @pytest.mark.asyncio
    async def test_max_issues_keeps_most_severe(self):
        client = StubOllamaClient()
        client.generate.return_value = generation(issues_response(
            make_raw_issue(line=1, severity="low"),
            make_raw_issue(line=2, severity="critical"),
            make_raw_issue(line=3, severity="high"),
        ))

        result = await _auditor(client=client).audit(_request(max_issues=2))

        assert [i.severity for i in result.issues] == [Severity.CRITICAL, Severity.HIGH]

    @pytest.mark.asyncio
    async def test_passes_model_config_to_backend(self):
        client = StubOllamaClient(models=["codellama:7b"])
        await _auditor(AuditType.SECURITY, client=client).audit(_request())

        kwargs = client.generate.await_args.kwargs
        assert kwargs["model"] == "codellama:7b"
        assert kwargs["temperature"] == 0.05
        assert kwargs["max_tokens"] == 4096
        assert kwargs["top_p"] == 0.9
        assert "```python" in kwargs["prompt"]

    @pytest.mark.asyncio
    async def test_unreachable_backend(self):
        client = StubOllamaClient(models=[], healthy=False)
        with pytest.raises(OllamaUnavailableError):
            await _auditor(client=client).audit(_request())
        client.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_healthy_backend_without_models(self):
        client = StubOllamaClient(models=[], healthy=True)
        with pytest.raises(NoAvailableModelError):
            await _auditor(client=client).audit(_request())

    def test_factory(self):
        assert len(get_supported_audit_types()) == 7
        assert _auditor(AuditType.SECURITY).fast_prompt_builder is not None
        assert _auditor(AuditType.QUALITY).fast_prompt_builder is None
        with pytest.raises(ValueError):
            _auditor(AuditType.ALL)

    def test_update_settings_merges_rules(self):
        auditor = _auditor(rules={"a": False})
        auditor.update_settings({"rules": {"b": False}, "enabled": False})

        assert auditor.settings.rules == {"a": False, "b": False}
        assert auditor.enabled is False


# =============================================================================
# SECURITY
# =============================================================================


class TestSecurityEnrichment:
    CODE = 'password = "hunter2"\ncursor.execute("SELECT * FROM users WHERE id=" + uid)  # query\n'

    def _issue(self, line, description, severity=Severity.MEDIUM):
        return make_issue(AuditType.SECURITY, self.CODE, line, severity, "vulnerability", "t", description)

    def test_sql_injection_in_production(self):
        request = AuditRequest(
            code=self.CODE, language="python", audit_type="security",
            context=AuditContext(environment="production"),
        )
        [issue] = enrich_security_issues([self._issue(2, "Possible SQL injection")], request)

        assert issue.type == "sql_injection"
        assert issue.rule_id == "SEC001"
        assert issue.severity == Severity.CRITICAL
        assert "A03:2021" in issue.documentation

    def test_sql_injection_outside_production_keeps_severity(self):
        request = AuditRequest(code=self.CODE, language="python", audit_type="security")
        [issue] = enrich_security_issues([self._issue(2, "Possible SQL injection")], request)

        assert issue.type == "sql_injection"
        assert issue.severity == Severity.MEDIUM

    def test_hardcoded_secret_is_always_critical(self):
        request = AuditRequest(code=self.CODE, language="python", audit_type="security")
        [issue] = enrich_security_issues([self._issue(1, "Hardcoded password", Severity.LOW)], request)

        assert issue.type == "hardcoded_secret"
        assert issue.severity == Severity.CRITICAL
        assert issue.impact

    def test_unrelated_issue_untouched(self):
        request = AuditRequest(code=self.CODE, language="python", audit_type="security")
        original = self._issue(1, "Variable shadows builtin")
        assert enrich_security_issues([original], request) == [original]


# =============================================================================
# PERFORMANCE
# =============================================================================


class TestPerformancePatterns:
    def test_nested_python_loops_are_high(self):
        issues = [i for i in detect_performance_patterns(NESTED_LOOPS, "python") if i.type == "nested_loops"]

        assert len(issues) == 1
        assert issues[0].line == 2
        assert issues[0].severity == Severity.HIGH
        assert issues[0].rule_id == "PERF001"

    def test_sibling_loops_are_not_nested(self):
        code = "for a in x:\n    pass\nfor b in y:\n    pass\n"
        assert not [i for i in detect_performance_patterns(code, "python") if i.type == "nested_loops"]

    def test_nested_javascript_loops(self):
        code = "for (let i = 0; i < n; i++) {\n  for (let j = 0; j < n; j++) {\n    sum += i * j;\n  }\n}\n"
        issues = detect_performance_patterns(code, "javascript")
        assert "nested_loops" in {i.type for i in issues}

    def test_query_in_loop_is_critical(self):
        code = "for user in users:\n    db.execute('SELECT 1')\n"
        [issue] = [i for i in detect_performance_patterns(code, "python") if i.type == "database_query_in_loop"]
        assert issue.severity == Severity.CRITICAL
        assert issue.line == 2

    def test_blocking_call_in_async_python(self):
        code = "async def handler():\n    time.sleep(1)\n"
        assert "blocking_operation_in_async" in {i.type for i in detect_performance_patterns(code, "python")}

    def test_escalation_for_performance_critical(self):
        issues = [
            make_issue(AuditType.PERFORMANCE, "x", 1, Severity.MEDIUM, "a", "t", "d"),
            make_issue(AuditType.PERFORMANCE, "x", 1, Severity.LOW, "b", "t", "d"),
            make_issue(AuditType.PERFORMANCE, "x", 1, Severity.HIGH, "c", "t", "d"),
            make_issue(AuditType.PERFORMANCE, "x", 1, Severity.INFO, "d", "t", "d"),
        ]
        escalated = escalate_for_performance_critical(issues)

        assert [i.severity for i in escalated] == [
            Severity.HIGH, Severity.MEDIUM, Severity.HIGH, Severity.INFO
        ]
        assert all(i.impact for i in escalated)

    def test_static_findings_merge_with_model_findings(self):
        model_issue = make_issue(AuditType.PERFORMANCE, NESTED_LOOPS, 2, Severity.MEDIUM, "nested_loops", "t", "d")
        request = AuditRequest(
            code=NESTED_LOOPS, language="python", audit_type="performance",
            context=AuditContext(performance_critical=True),
        )

        merged = apply_performance_patterns([model_issue], request)

        nested = [i for i in merged if i.type == "nested_loops"]
        assert len(nested) == 1
        # The model's finding wins the dedupe, then gets escalated
        assert nested[0].title == "t"
        assert nested[0].severity == Severity.HIGH


# =============================================================================
# COMPLETENESS / METRICS / PROMPTS
# =============================================================================


class TestCompletenessMarkers:
    def test_markers_in_comments(self):
        code = "x = 1  # TODO: handle errors\n// FIXME broken\n/* HACK */\ntodo_list = []\n"
        found = {(i.line, i.rule_id, i.severity) for i in detect_completeness_markers(code)}

        assert found == {
            (1, "COMP001", Severity.MEDIUM),
            (2, "COMP002", Severity.HIGH),
            (3, "COMP003", Severity.MEDIUM),
        }

    def test_placeholder_bodies(self):
        code = "def pay():\n    raise NotImplementedError\n"
        [issue] = detect_completeness_markers(code)
        assert issue.type == "placeholder_implementation"
        assert issue.severity == Severity.HIGH
        assert issue.line == 2


class TestCodeMetrics:
    def test_python(self):
        code = "class A:\n    def f(self):\n        if x:\n            pass\n\ndef g():\n    pass\n"
        metrics = analyze_code_metrics(code)

        assert metrics.function_count == 2
        assert metrics.class_count == 1
        assert metrics.line_count == 8

    def test_javascript_function_counted_once(self):
        metrics = analyze_code_metrics("function add(a, b) {\n  return a + b;\n}\n")
        assert metrics.function_count == 1


class TestPrompts:
    def test_full_prompt(self):
        request = AuditRequest(
            code="eval(x)", language="javascript", audit_type="security",
            context=AuditContext(environment="production", framework="express"),
        )
        prompt = generate_prompt(AuditType.SECURITY, request, analyze_code_metrics("eval(x)"), ["Check eval"])

        assert "production code" in prompt.system
        assert "Check eval" in prompt.system
        assert "Severity guidelines" in prompt.system
        assert "```javascript\neval(x)\n```" in prompt.prompt
        assert '"category": "security"' in prompt.prompt

    def test_fast_prompt(self):
        request = AuditRequest(code="x", language="python", audit_type="completeness", priority="fast")
        prompt = generate_fast_mode_prompt(AuditType.COMPLETENESS, request)

        assert prompt.prompt.startswith("FAST MODE")
        assert '"category": "completeness"' in prompt.prompt
