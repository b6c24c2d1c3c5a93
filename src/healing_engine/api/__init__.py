"""
API module for the triage and self-healing engine.

This module contains:
- healing_endpoints.py: Triage, healing and change approval endpoints
"""

__all__ = ["healing_endpoints"]
