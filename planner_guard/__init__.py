"""
Planner Guard.

Usage governance and AI gateway for the business planner chat: input
security validation, per-user rate limiting with abuse escalation, token
budgeting, and resilient completion calls with retry and fallback.
"""

__version__ = "0.1.0"
