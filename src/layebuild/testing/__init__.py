"""Execution test harness and the external file-check suite driver."""

from .exec_harness import ExecTestHarness, TestCase, TestRunRecord, TestSuiteReport
from .fchk import run_fchk

__all__ = [
    "ExecTestHarness",
    "TestCase",
    "TestRunRecord",
    "TestSuiteReport",
    "run_fchk",
]
