"""
Load generation engine: payloads, virtual users, ramp scheduling,
result aggregation and threshold evaluation.
"""

import importlib
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ramp_load.engine.payload import PayloadGenerator, Order
    from ramp_load.engine.virtual_user import VirtualUser, basic_auth_headers
    from ramp_load.engine.scheduler import RampScheduler, Stage, interpolate_target
    from ramp_load.engine.aggregator import ResultAggregator, RequestResult, AggregateStats
    from ramp_load.engine.thresholds import ThresholdEvaluator, ThresholdRule, ThresholdResult
    from ramp_load.engine.runner import LoadTestRunner, RunReport

_LAZY_IMPORTS = {
    "PayloadGenerator": ("ramp_load.engine.payload", "PayloadGenerator"),
    "Order": ("ramp_load.engine.payload", "Order"),
    "VirtualUser": ("ramp_load.engine.virtual_user", "VirtualUser"),
    "basic_auth_headers": ("ramp_load.engine.virtual_user", "basic_auth_headers"),
    "RampScheduler": ("ramp_load.engine.scheduler", "RampScheduler"),
    "Stage": ("ramp_load.engine.scheduler", "Stage"),
    "interpolate_target": ("ramp_load.engine.scheduler", "interpolate_target"),
    "ResultAggregator": ("ramp_load.engine.aggregator", "ResultAggregator"),
    "RequestResult": ("ramp_load.engine.aggregator", "RequestResult"),
    "AggregateStats": ("ramp_load.engine.aggregator", "AggregateStats"),
    "ThresholdEvaluator": ("ramp_load.engine.thresholds", "ThresholdEvaluator"),
    "ThresholdRule": ("ramp_load.engine.thresholds", "ThresholdRule"),
    "ThresholdResult": ("ramp_load.engine.thresholds", "ThresholdResult"),
    "LoadTestRunner": ("ramp_load.engine.runner", "LoadTestRunner"),
    "RunReport": ("ramp_load.engine.runner", "RunReport"),
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

__all__ = list(_LAZY_IMPORTS.keys())
