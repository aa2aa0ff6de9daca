"""Transport adapters exposing the audit orchestrator."""
