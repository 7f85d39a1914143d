"""
Reporter module - human-readable and JSON summaries of a load test run.
"""

from ramp_load.reporter.summary import SummaryReporter

__all__ = ["SummaryReporter"]
