"""Run engine: scheduler, virtual users, and the orchestrator."""
