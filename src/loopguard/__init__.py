"""
loopguard — budget admission control and handoff for agent work loops.

File: src/loopguard/__init__.py

Purpose
- Package root. Meters the work an agent performs against a fixed budget,
  gates every action, and hands work off to a fresh context when the budget
  is spent.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
