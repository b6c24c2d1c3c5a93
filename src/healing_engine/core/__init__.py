"""
Core module for the triage and self-healing engine.

This module contains:
- config.py: Environment settings
- config_loader.py: YAML engine configuration
- exceptions.py: Engine error types
- logging_config.py: Structured logging setup
- audit_trail.py: Audit events for triage and healing decisions
- models/: Data models
"""

__all__ = ["config", "config_loader", "exceptions", "logging_config", "audit_trail", "models"]
