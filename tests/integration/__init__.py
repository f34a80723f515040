"""
loopguard — integration test package

File: tests/integration/__init__.py

Purpose
- Test package marker file for subprocess-level CLI contracts.
"""
