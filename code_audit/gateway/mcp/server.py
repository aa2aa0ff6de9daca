"""
MCP Server for Code Audit

Features:
- audit_code: security, completeness, performance, quality, architecture,
  testing and documentation audits through local Ollama models
- health_check: backend, auditor and host status
- list_models: model catalog with availability and runtime metrics
- update_config: live auditor settings and model selection strategy
"""
import asyncio
import json
import logging
import sys
from typing import Any, Dict, Optional, Set

from ...core.engine import AuditOrchestrator
from ...core.errors import AuditError, RequestValidationError
from ...core.types import AuditRequest, AuditType, Priority

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class UnknownToolError(Exception):
    pass


class AuditMCPServer:
    """MCP Server exposing the audit orchestrator as tools"""

    def __init__(self, orchestrator: AuditOrchestrator):
        self.orchestrator = orchestrator

    def get_tools(self) -> list[dict]:
        """Tools available via MCP"""
        return [
            {
                "name": "audit_code",
                "description": """Audit source code with a local Ollama model.
- auditType "all" runs every enabled auditor and merges the findings
- priority "fast" runs security + completeness only, for quick feedback
- findings come back sorted by severity, then line""",
                "inputSchema": {
                    "type": "object",
                    "properties": {
                        "code": {"type": "string", "description": "Source code to audit"},
                        "language": {
                            "type": "string",
                            "description": "Programming language (python, javascript, go, ...)",
                        },
                        "auditType": {
                            "type": "string",
                            "enum": [t.value for t in AuditType],
                            "default": AuditType.ALL.value,
                        },
                        "file": {"type": "string", "description": "File path, for reference"},
                        "context": {
                            "type": "object",
                            "properties": {
                                "framework": {"type": "string"},
                                "environment": {
                                    "type": "string",
                                    "enum": ["production", "development", "testing"],
                                },
                                "performanceCritical": {"type": "boolean"},
                                "teamSize": {"type": "integer"},
                                "projectType": {
                                    "type": "string",
                                    "enum": ["web", "api", "cli", "library"],
                                },
                                "languageVersion": {"type": "string"},
                            },
                        },
                        "priority": {
                            "type": "string",
                            "enum": [p.value for p in Priority],
                            "default": Priority.THOROUGH.value,
                        },
                        "maxIssues": {"type": "integer", "minimum": 1},
                        "includeFixSuggestions": {"type": "boolean", "default": True},
                    },
                    "required": ["code", "language"],
                },
            },
            {
                "name": "health_check",
                "description": "Check Ollama connectivity, installed models and auditor status",
                "inputSchema": {"type": "object", "properties": {}},
            },
            {
                "name": "list_models",
                "description": "List known models with availability and performance metrics",
                "inputSchema": {"type": "object", "properties": {}},
            },
            {
                "name": "update_config",
                "description": """Update configuration at runtime.
- auditors: per audit type {enabled, severity, rules, thresholds}
- models: per model partial config
- selectionStrategy: default, performance, quality or metrics
- backend: accepted but applied only after restart""",
                "inputSchema": {
                    "type": "object",
                    "properties": {
                        "auditors": {"type": "object"},
                        "models": {"type": "object"},
                        "selectionStrategy": {
                            "type": "string",
                            "enum": ["default", "performance", "quality", "metrics"],
                        },
                        "backend": {"type": "object"},
                    },
                },
            },
        ]

    async def handle_tool(self, name: str, args: dict) -> dict:
        """Handle tool calls"""
        if name == "audit_code":
            return await self._audit_code(args)
        elif name == "health_check":
            return (await self.orchestrator.health_check()).to_dict()
        elif name == "list_models":
            return self.orchestrator.list_models()
        elif name == "update_config":
            return self.orchestrator.update_config(args)

        raise UnknownToolError(f"Unknown tool: {name}")

    async def _audit_code(self, args: dict) -> dict:
        for field in ("code", "language"):
            if not isinstance(args.get(field), str):
                raise RequestValidationError(f"'{field}' is required and must be a string")
        if args.get("context") is not None and not isinstance(args["context"], dict):
            raise RequestValidationError("'context' must be an object")
        max_issues = args.get("maxIssues")
        if max_issues is not None and (isinstance(max_issues, bool) or not isinstance(max_issues, int)):
            raise RequestValidationError("'maxIssues' must be an integer")

        request = AuditRequest.from_dict(args)
        result = await self.orchestrator.audit_code(request)
        return result.to_dict(include_suggestions=request.include_fix_suggestions)

    # =========================================================================
    # JSON-RPC
    # =========================================================================

    async def handle_request(self, request: Any) -> Optional[dict]:
        """Answer one JSON-RPC message; notifications get no response."""
        if not isinstance(request, dict):
            return _error(None, INVALID_REQUEST, "Request must be a JSON object")

        request_id = request.get("id")
        method = request.get("method")
        if method is None or str(method).startswith("notifications/"):
            return None

        try:
            if method == "initialize":
                result = {
                    "protocolVersion": PROTOCOL_VERSION,
                    "capabilities": {"tools": {}},
                    "serverInfo": {
                        "name": self.orchestrator.config.name,
                        "version": self.orchestrator.config.version,
                    },
                }
            elif method == "tools/list":
                result = {"tools": self.get_tools()}
            elif method == "tools/call":
                params = request.get("params") or {}
                payload = await self.handle_tool(params.get("name"), params.get("arguments") or {})
                result = {
                    "content": [{
                        "type": "text",
                        "text": json.dumps(payload, indent=2, default=str),
                    }]
                }
            elif method == "ping":
                result = {}
            else:
                return _error(request_id, METHOD_NOT_FOUND, f"Method not found: {method}")

        except UnknownToolError as e:
            return _error(request_id, METHOD_NOT_FOUND, str(e))
        except RequestValidationError as e:
            return _error(request_id, INVALID_PARAMS, e.message, e.to_dict())
        except AuditError as e:
            logger.error(f"{method} failed: {e}")
            return _error(request_id, INTERNAL_ERROR, e.message, e.to_dict())
        except Exception as e:
            logger.exception(f"Unexpected error handling {method}")
            return _error(request_id, INTERNAL_ERROR, str(e))

        return {"jsonrpc": "2.0", "id": request_id, "result": result}


def _error(request_id: Any, code: int, message: str, data: Optional[Dict[str, Any]] = None) -> dict:
    error: Dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "id": request_id, "error": error}


# ═══════════════════════════════════════════════════════════════════════════
# MCP PROTOCOL
# ═══════════════════════════════════════════════════════════════════════════

def _write(response: dict) -> None:
    print(json.dumps(response, default=str), flush=True)


async def _respond(server: AuditMCPServer, request: Any) -> None:
    response = await server.handle_request(request)
    if response is not None:
        _write(response)


async def serve_stdio(orchestrator: AuditOrchestrator) -> None:
    """Run MCP server (stdio). Requests are handled concurrently."""
    server = AuditMCPServer(orchestrator)
    loop = asyncio.get_running_loop()
    pending: Set[asyncio.Task] = set()

    await orchestrator.initialize()
    logger.info("MCP server listening on stdio")
    try:
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            if not line.strip():
                continue

            try:
                request = json.loads(line)
            except json.JSONDecodeError as e:
                _write(_error(None, PARSE_ERROR, f"Parse error: {e}"))
                continue

            task = asyncio.create_task(_respond(server, request))
            pending.add(task)
            task.add_done_callback(pending.discard)

        if pending:
            await asyncio.gather(*pending)
    finally:
        await orchestrator.shutdown()
