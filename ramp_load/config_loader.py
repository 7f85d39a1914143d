"""
Configuration-Driven Load Plan Loader

This module loads load-test plans from YAML: the target endpoint and its
credentials, the ramp stages, the thresholds that decide pass/fail and the
per-request checks.

Example:
    from ramp_load.config_loader import load_plan

    plan = load_plan("examples/plans/orders_ramp.yaml")
    for stage in plan.schedule():
        print(stage.duration, stage.target)
"""

import re
from typing import Any, Dict, List, Literal, Optional, Tuple, Union
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from ramp_load.common.errors import ConfigurationError, ErrorCode
from ramp_load.common.logger import get_logger
from ramp_load.engine.checks import CheckMap, build_check, default_checks
from ramp_load.engine.scheduler import Stage
from ramp_load.engine.thresholds import ThresholdRule, validate_rule

logger = get_logger(__name__)

_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: Any) -> float:
    """
    Parse a k6-style duration into seconds.

    Accepts numbers (seconds) and strings such as ``"30s"``, ``"1m30s"``,
    ``"500ms"`` or ``"2h"``.

    Raises:
        ValueError: If the value cannot be parsed.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        raise ValueError(f"Invalid duration: {value!r}")

    text = value.strip().lower()
    try:
        return float(text)
    except ValueError:
        pass

    position = 0
    total = 0.0
    for match in _DURATION_PART_RE.finditer(text):
        if match.start() != position:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    if position == 0 or position != len(text):
        raise ValueError(f"Invalid duration '{value}'. Expected e.g. '30s', '1m30s', '500ms'")
    return total


class TargetConfig(BaseModel):
    """
    Endpoint under test.

    Attributes:
        url: URL receiving the POST requests.
        username: Basic auth username.
        password: Basic auth password.
        timeout: Per-request timeout in seconds (accepts duration strings).
    """
    url: str = Field(..., description="Target URL")
    username: str = Field(..., description="Basic auth username")
    password: str = Field(..., description="Basic auth password")
    timeout: float = Field(default=60.0, gt=0, description="Request timeout in seconds")

    @field_validator('timeout', mode='before')
    @classmethod
    def parse_timeout(cls, v: Any) -> float:
        return parse_duration(v)

    @field_validator('url')
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate URL is an http(s) URL."""
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError("url must start with http:// or https://")
        return v

    @field_validator('username', 'password')
    @classmethod
    def validate_credentials(cls, v: str) -> str:
        if not v:
            raise ValueError("credentials cannot be empty")
        return v


class StageConfig(BaseModel):
    """One ramp stage: reach ``target`` VUs over ``duration``."""
    duration: float = Field(..., gt=0, description="Stage duration in seconds")
    target: int = Field(..., ge=0, description="Target VU count at the end of the stage")

    @field_validator('duration', mode='before')
    @classmethod
    def parse_stage_duration(cls, v: Any) -> float:
        return parse_duration(v)


class ThresholdEntry(BaseModel):
    """Long form of a threshold, used to set abort_on_fail."""
    threshold: str = Field(..., description="k6 threshold expression, e.g. 'p(95)<500'")
    abort_on_fail: bool = Field(default=False, description="Stop the run as soon as this fails")


class CheckConfig(BaseModel):
    """
    A named status-code check.

    ``equals`` passes only for ``status``; ``not_equals`` fails only for it.
    """
    name: str = Field(..., description="Check name shown in the summary")
    status: int = Field(..., ge=0, le=999, description="HTTP status (0 = network error)")
    mode: Literal["equals", "not_equals"] = Field(default="not_equals")


class RunOptions(BaseModel):
    """Scheduler and pacing options."""
    tick_interval: float = Field(default=1.0, gt=0, description="Seconds between ramp samples")
    graceful_stop: float = Field(default=30.0, ge=0, description="Seconds to wait for VUs at shutdown")
    min_iteration_duration: float = Field(default=0.0, ge=0, description="Minimum seconds per iteration")

    @field_validator('tick_interval', 'graceful_stop', 'min_iteration_duration', mode='before')
    @classmethod
    def parse_option_duration(cls, v: Any) -> float:
        return parse_duration(v)


class LoadPlan(BaseModel):
    """
    Complete load-test plan.

    Attributes:
        version: Plan schema version.
        metadata: Free-form metadata (name, description, ...).
        target: Endpoint and credentials.
        stages: Ramp schedule, consumed in order.
        thresholds: Metric name to list of expressions.
        checks: Named checks; the built-in six are used when omitted.
        options: Scheduler and pacing options.
    """
    version: str = Field(default="1.0", description="Plan schema version")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Plan metadata")
    target: TargetConfig
    stages: List[StageConfig] = Field(..., min_length=1, description="Ramp stages")
    thresholds: Dict[str, List[Union[str, ThresholdEntry]]] = Field(default_factory=dict)
    checks: Optional[List[CheckConfig]] = Field(default=None)
    options: RunOptions = Field(default_factory=RunOptions)

    @model_validator(mode='after')
    def validate_thresholds(self) -> 'LoadPlan':
        """Validate every threshold expression against its metric."""
        for rule in self.threshold_rules():
            try:
                validate_rule(rule)
            except ValueError as e:
                raise ValueError(f"Invalid threshold '{rule.name}': {e}") from e
        return self

    @model_validator(mode='after')
    def validate_check_names(self) -> 'LoadPlan':
        if self.checks:
            names = [check.name for check in self.checks]
            duplicates = sorted({name for name in names if names.count(name) > 1})
            if duplicates:
                raise ValueError(f"Duplicate check names: {duplicates}")
        return self

    @property
    def name(self) -> str:
        return str(self.metadata.get("name", "unnamed"))

    @property
    def max_vus(self) -> int:
        return max(stage.target for stage in self.stages)

    @property
    def total_duration(self) -> float:
        return sum(stage.duration for stage in self.stages)

    def schedule(self) -> Tuple[Stage, ...]:
        """Immutable schedule for the RampScheduler."""
        return tuple(Stage(duration=s.duration, target=s.target) for s in self.stages)

    def threshold_rules(self) -> List[ThresholdRule]:
        rules = []
        for metric, entries in self.thresholds.items():
            for entry in entries:
                if isinstance(entry, ThresholdEntry):
                    rules.append(ThresholdRule(metric, entry.threshold, entry.abort_on_fail))
                else:
                    rules.append(ThresholdRule(metric, entry))
        return rules

    def check_map(self) -> CheckMap:
        if self.checks is None:
            return default_checks()
        return {check.name: build_check(check.status, check.mode) for check in self.checks}


def _error_code_for(exc: ValidationError) -> str:
    for error in exc.errors():
        loc = error.get("loc", ())
        if len(loc) >= 2 and loc[0] == "target" and loc[1] in ("username", "password", "url"):
            return ErrorCode.CONFIG_MISSING_CREDENTIALS
        if loc and loc[0] == "thresholds":
            return ErrorCode.CONFIG_BAD_THRESHOLD
    if "threshold" in str(exc).lower():
        return ErrorCode.CONFIG_BAD_THRESHOLD
    return ErrorCode.CONFIG_INVALID


def build_plan(data: Dict[str, Any]) -> LoadPlan:
    """
    Validate a plan dictionary.

    Raises:
        ConfigurationError: If validation fails.
    """
    try:
        return LoadPlan(**data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid load plan: {e}", code=_error_code_for(e)) from e


def load_plan(path: str, overrides: Optional[Dict[str, Optional[str]]] = None) -> LoadPlan:
    """
    Load a load plan from a YAML file.

    Args:
        path: Path to the YAML file.
        overrides: Optional target fields (url, username, password) that
            replace the file's values before validation.

    Returns:
        Validated LoadPlan.

    Raises:
        ConfigurationError: If the file is missing, unparsable or invalid.
    """
    plan_path = Path(path)

    if not plan_path.exists():
        raise ConfigurationError(f"Load plan file not found: {path}")

    logger.info(f"Loading load plan from: {plan_path}")

    try:
        with open(plan_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.error(f"Failed to parse YAML file {path}: {e}")
        raise ConfigurationError(f"Failed to parse YAML file {path}: {e}") from e

    if not data:
        raise ConfigurationError("YAML file is empty or contains no data")
    if not isinstance(data, dict):
        raise ConfigurationError("Load plan must be a YAML mapping")

    updates = {k: v for k, v in (overrides or {}).items() if v is not None}
    if updates:
        target = data.get("target") or {}
        if not isinstance(target, dict):
            raise ConfigurationError("'target' must be a mapping")
        data["target"] = {**target, **updates}

    plan = build_plan(data)
    logger.info(
        f"Loaded load plan '{plan.name}': {len(plan.stages)} stages, "
        f"peak {plan.max_vus} VUs over {plan.total_duration:.0f}s, "
        f"{len(plan.threshold_rules())} thresholds"
    )
    return plan
