"""Failure triage and locator self-healing engine for mobile UI tests."""

__version__ = "0.1.0"
