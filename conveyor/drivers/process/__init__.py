"""Subprocess driver."""

from conveyor.drivers.process.runner import ProcessResult, ProcessRunner

__all__ = ["ProcessResult", "ProcessRunner"]
