"""
Core modules for Planner Guard.

This package contains input validation, rate limiting, token budgeting,
the completion gateway and the caller-facing chat service.
"""
