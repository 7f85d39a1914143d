"""
ramp-load - ramping HTTP load tests with pass/fail thresholds

Drives a staged virtual-user ramp against an HTTP endpoint, posting a
synthetic JSON order per iteration with Basic authentication, counts named
status checks, and evaluates latency/error-rate thresholds at the end.
"""

import importlib
from typing import TYPE_CHECKING

__version__ = "0.1.0"

if TYPE_CHECKING:
    from ramp_load.config_loader import load_plan, LoadPlan, TargetConfig, StageConfig
    from ramp_load.engine.runner import LoadTestRunner, RunReport
    from ramp_load.engine.payload import PayloadGenerator
    from ramp_load.engine.scheduler import RampScheduler, Stage
    from ramp_load.engine.aggregator import ResultAggregator, RequestResult, AggregateStats
    from ramp_load.engine.thresholds import ThresholdEvaluator, ThresholdRule
    from ramp_load.reporter.summary import SummaryReporter

_LAZY_IMPORTS = {
    "load_plan": ("ramp_load.config_loader", "load_plan"),
    "LoadPlan": ("ramp_load.config_loader", "LoadPlan"),
    "TargetConfig": ("ramp_load.config_loader", "TargetConfig"),
    "StageConfig": ("ramp_load.config_loader", "StageConfig"),
    "LoadTestRunner": ("ramp_load.engine.runner", "LoadTestRunner"),
    "RunReport": ("ramp_load.engine.runner", "RunReport"),
    "PayloadGenerator": ("ramp_load.engine.payload", "PayloadGenerator"),
    "RampScheduler": ("ramp_load.engine.scheduler", "RampScheduler"),
    "Stage": ("ramp_load.engine.scheduler", "Stage"),
    "ResultAggregator": ("ramp_load.engine.aggregator", "ResultAggregator"),
    "RequestResult": ("ramp_load.engine.aggregator", "RequestResult"),
    "AggregateStats": ("ramp_load.engine.aggregator", "AggregateStats"),
    "ThresholdEvaluator": ("ramp_load.engine.thresholds", "ThresholdEvaluator"),
    "ThresholdRule": ("ramp_load.engine.thresholds", "ThresholdRule"),
    "SummaryReporter": ("ramp_load.reporter.summary", "SummaryReporter"),
}


def __getattr__(name: str):
    if name in _LAZY_IMPORTS:
        module_name, attr_name = _LAZY_IMPORTS[name]
        module = importlib.import_module(module_name)
        value = getattr(module, attr_name)
        globals()[name] = value
        return value
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


def __dir__() -> list[str]:
    return sorted(list(globals().keys()) + list(_LAZY_IMPORTS.keys()))

__all__ = [
    "load_plan",
    "LoadPlan",
    "TargetConfig",
    "StageConfig",
    "LoadTestRunner",
    "RunReport",
    "PayloadGenerator",
    "RampScheduler",
    "Stage",
    "ResultAggregator",
    "RequestResult",
    "AggregateStats",
    "ThresholdEvaluator",
    "ThresholdRule",
    "SummaryReporter",
    "__version__",
]
