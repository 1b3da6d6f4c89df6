"""Scenario definition: steps, stages, hooks, and the HTTP client."""
