"""Automation: decision-to-position lifecycle."""

from autotrader.automation.orchestrator import AutomationOrchestrator, resolve_direction

__all__ = ["AutomationOrchestrator", "resolve_direction"]
