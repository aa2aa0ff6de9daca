"""
Code Audit MCP Server

Local code audits backed by Ollama models:
- MCP stdio and HTTP transports
- Seven audit categories plus fast mode
- Model selection by audit type, language and priority
"""
__version__ = "1.0.0"
