#!/usr/bin/env python3
"""
Code Audit CLI Runner
Serve the MCP server, or run one-off audits and checks from the command line

Usage:
    code-audit serve
    code-audit serve --http --config code-audit.yaml
    code-audit audit src/app.py --type security --output report.json
    code-audit health
    code-audit models --pull codellama:7b
"""
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from .core.config import ServerConfig, load_config
from .core.engine import AuditOrchestrator
from .core.errors import AuditError, ConfigError
from .core.log import configure_logging
from .core.types import AuditRequest, AuditType, Priority

logger = logging.getLogger(__name__)

# File extension -> language name understood by the prompt and model tables
LANGUAGE_BY_EXTENSION = {
    ".py": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".java": "java",
    ".cs": "csharp",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".hpp": "cpp",
    ".c": "c",
    ".h": "c",
    ".go": "go",
    ".rs": "rust",
    ".php": "php",
    ".rb": "ruby",
    ".swift": "swift",
    ".kt": "kotlin",
    ".scala": "scala",
    ".html": "html",
    ".css": "css",
    ".sql": "sql",
    ".sh": "shell",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".json": "json",
}


def detect_language(path: Path) -> Optional[str]:
    if path.name.lower() == "dockerfile":
        return "dockerfile"
    return LANGUAGE_BY_EXTENSION.get(path.suffix.lower())


def _print_json(data: dict) -> None:
    print(json.dumps(data, indent=2, default=str))


# =============================================================================
# COMMANDS
# =============================================================================

def cmd_serve(config: ServerConfig, args) -> int:
    orchestrator = AuditOrchestrator(config)
    transport = "http" if args.http else config.server.transport

    if transport == "http":
        import uvicorn

        from .gateway.api.main import create_app

        logger.info(f"Starting HTTP gateway on {config.server.host}:{config.server.port}")
        uvicorn.run(
            create_app(orchestrator),
            host=config.server.host,
            port=config.server.port,
            log_level=config.logging.level,
        )
        return 0

    from .gateway.mcp.server import serve_stdio

    asyncio.run(serve_stdio(orchestrator))
    return 0


async def run_audit(config: ServerConfig, request: AuditRequest) -> dict:
    """Run a single audit and return the JSON-ready result"""
    orchestrator = AuditOrchestrator(config)
    await orchestrator.initialize()
    try:
        result = await orchestrator.audit_code(request)
        return result.to_dict(include_suggestions=request.include_fix_suggestions)
    finally:
        await orchestrator.shutdown()


def cmd_audit(config: ServerConfig, args) -> int:
    path = Path(args.file)
    if not path.is_file():
        print(f"File not found: {path}", file=sys.stderr)
        return 2

    language = args.language or detect_language(path)
    if not language:
        print(f"Cannot infer language for {path.name}; pass --language", file=sys.stderr)
        return 2

    request = AuditRequest(
        code=path.read_text(encoding="utf-8", errors="replace"),
        language=language,
        audit_type=args.type,
        file=str(path),
        priority=args.priority,
        max_issues=args.max_issues,
        include_fix_suggestions=not args.no_suggestions,
    )

    try:
        output = asyncio.run(run_audit(config, request))
    except AuditError as e:
        print(f"Audit failed: {e}", file=sys.stderr)
        _print_json({"error": e.to_dict()})
        return 1

    if args.output:
        Path(args.output).write_text(json.dumps(output, indent=2, default=str))
        print(f"Results saved to: {args.output}", file=sys.stderr)
    else:
        _print_json(output)

    summary = output["summary"]
    print(
        f"{summary['total']} issues "
        f"({summary['critical']} critical, {summary['high']} high, {summary['medium']} medium)",
        file=sys.stderr,
    )
    return 0


async def run_health(config: ServerConfig) -> dict:
    orchestrator = AuditOrchestrator(config)
    await orchestrator.initialize()
    try:
        return (await orchestrator.health_check()).to_dict()
    finally:
        await orchestrator.shutdown()


def cmd_health(config: ServerConfig, args) -> int:
    result = asyncio.run(run_health(config))
    _print_json(result)
    return 0 if result["status"] != "unhealthy" else 1


async def run_models(config: ServerConfig, pull: Optional[str] = None) -> dict:
    orchestrator = AuditOrchestrator(config)
    await orchestrator.initialize()
    try:
        output = {}
        if pull:
            output["pulled"] = {"model": pull, "success": await orchestrator.client.ensure_model(pull)}
        output.update(orchestrator.list_models())
        return output
    finally:
        await orchestrator.shutdown()


def cmd_models(config: ServerConfig, args) -> int:
    output = asyncio.run(run_models(config, args.pull))
    _print_json(output)
    if "pulled" in output and not output["pulled"]["success"]:
        return 1
    return 0


COMMANDS = {
    "serve": cmd_serve,
    "audit": cmd_audit,
    "health": cmd_health,
    "models": cmd_models,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="code-audit",
        description="Code Audit - local LLM code review over MCP",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s serve                          MCP server on stdio (for Claude Desktop)
  %(prog)s serve --http                   REST gateway on the configured host/port
  %(prog)s audit app.py --type security   One-off audit, JSON to stdout
  %(prog)s health                         Backend and auditor status
  %(prog)s models --pull codellama:7b     Install a model, then list models

Config is read from --config, $CODE_AUDIT_CONFIG, ./code-audit.yaml or
~/.code-audit/config.yaml (first found).
        """
    )
    parser.add_argument("--config", "-c", help="Path to YAML config file")
    parser.add_argument("--log-level", choices=["debug", "info", "warning", "error"],
                        help="Override configured log level")

    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the MCP server")
    serve.add_argument("--http", action="store_true",
                       help="Serve the REST gateway instead of stdio")

    audit = sub.add_parser("audit", help="Audit a single file")
    audit.add_argument("file", help="Source file to audit")
    audit.add_argument("--language", "-l", help="Language (default: inferred from extension)")
    audit.add_argument("--type", "-t", default=AuditType.ALL.value,
                       choices=[t.value for t in AuditType],
                       help="Audit type (default: all)")
    audit.add_argument("--priority", "-p", default=Priority.THOROUGH.value,
                       choices=[p.value for p in Priority],
                       help="fast = security + completeness only (default: thorough)")
    audit.add_argument("--max-issues", "-m", type=int,
                       help="Cap on the number of reported issues")
    audit.add_argument("--no-suggestions", action="store_true",
                       help="Omit fix suggestions from the output")
    audit.add_argument("--output", "-o", help="Output JSON file path")

    sub.add_parser("health", help="Check backend and auditor status")

    models = sub.add_parser("models", help="List known and installed models")
    models.add_argument("--pull", help="Pull this model before listing")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        if e.details:
            print(json.dumps(e.details, indent=2), file=sys.stderr)
        sys.exit(2)

    if args.log_level:
        config.logging.level = args.log_level
    configure_logging(config.logging)

    sys.exit(COMMANDS[args.command](config, args))


if __name__ == "__main__":
    main()
