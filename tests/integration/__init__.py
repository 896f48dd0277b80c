"""
Integration tests for layebuild.

These tests drive real subprocesses through a scripted stand-in toolchain,
covering incremental compilation, fail-fast cancellation, linking and the
execution test harness end to end.
"""
