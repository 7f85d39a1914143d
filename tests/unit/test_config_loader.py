"""
Unit tests for configuration loader.
"""

import pytest
from pydantic import ValidationError

from ramp_load.common.errors import ConfigurationError, ErrorCode
from ramp_load.config_loader import (
    load_plan, build_plan, parse_duration,
    LoadPlan, TargetConfig, StageConfig, CheckConfig,
)
from ramp_load.engine.scheduler import Stage


@pytest.mark.parametrize("value,expected", [
    (30, 30.0),
    (1.5, 1.5),
    ("30", 30.0),
    ("30s", 30.0),
    ("1m30s", 90.0),
    ("500ms", 0.5),
    ("2h", 7200.0),
    (" 20S ", 20.0),
])
def test_parse_duration(value, expected):
    assert parse_duration(value) == expected


@pytest.mark.parametrize("value", ["", "abc", "30x", "s30", "1m 30s", None, True, [30]])
def test_parse_duration_rejects(value):
    with pytest.raises(ValueError):
        parse_duration(value)


def test_target_config_validation():
    target = TargetConfig(url=" https://api.example.com/orders ", username="u", password="p", timeout="2s")
    assert target.url == "https://api.example.com/orders"
    assert target.timeout == 2.0

    with pytest.raises(ValueError, match="http:// or https://"):
        TargetConfig(url="ftp://example.com", username="u", password="p")
    with pytest.raises(ValueError, match="credentials cannot be empty"):
        TargetConfig(url="http://example.com", username="", password="p")


def test_stage_config_validation():
    assert StageConfig(duration="1m", target=10).duration == 60.0
    with pytest.raises(ValidationError):
        StageConfig(duration="0s", target=1)
    with pytest.raises(ValidationError):
        StageConfig(duration="10s", target=-1)


def test_load_plan_from_yaml(write_plan, plan_dict):
    plan = load_plan(str(write_plan(plan_dict)))

    assert isinstance(plan, LoadPlan)
    assert plan.name == "unit plan"
    assert plan.target.timeout == 5.0
    assert plan.max_vus == 400
    assert plan.total_duration == 140.0
    assert plan.schedule() == (
        Stage(30.0, 50), Stage(30.0, 100), Stage(30.0, 200), Stage(30.0, 400), Stage(20.0, 0),
    )
    assert [rule.name for rule in plan.threshold_rules()] == [
        "http_req_duration: p(95)<500",
        "http_req_failed: rate<0.01",
    ]
    assert len(plan.check_map()) == 6
    assert plan.options.tick_interval == 1.0
    assert plan.options.graceful_stop == 30.0


def test_example_plan_loads():
    from pathlib import Path
    examples = Path(__file__).resolve().parents[2] / "examples" / "plans"
    for path in sorted(examples.glob("*.yaml")):
        plan = load_plan(str(path))
        assert plan.stages


def test_overrides_replace_target_fields(write_plan, plan_dict):
    path = write_plan(plan_dict)
    plan = load_plan(str(path), overrides={"url": "http://other.test/orders", "username": None, "password": "pw"})

    assert plan.target.url == "http://other.test/orders"
    assert plan.target.username == "user"
    assert plan.target.password == "pw"


def test_overrides_can_supply_missing_credentials(write_plan, plan_dict):
    del plan_dict["target"]["username"]
    del plan_dict["target"]["password"]
    path = write_plan(plan_dict)

    with pytest.raises(ConfigurationError) as exc_info:
        load_plan(str(path))
    assert exc_info.value.code == ErrorCode.CONFIG_MISSING_CREDENTIALS

    plan = load_plan(str(path), overrides={"username": "env-user", "password": "env-pass"})
    assert plan.target.username == "env-user"


def test_overrides_are_validated(write_plan, plan_dict):
    path = write_plan(plan_dict)

    with pytest.raises(ConfigurationError) as exc_info:
        load_plan(str(path), overrides={"url": "not-a-url"})
    assert exc_info.value.code == ErrorCode.CONFIG_MISSING_CREDENTIALS


def test_missing_file():
    with pytest.raises(ConfigurationError, match="not found"):
        load_plan("/nonexistent/plan.yaml")


def test_invalid_yaml(write_plan):
    path = write_plan("stages: [unclosed\n")
    with pytest.raises(ConfigurationError, match="Failed to parse YAML"):
        load_plan(str(path))


def test_empty_and_non_mapping_yaml(write_plan):
    with pytest.raises(ConfigurationError, match="empty"):
        load_plan(str(write_plan("", name="empty.yaml")))
    with pytest.raises(ConfigurationError, match="mapping"):
        load_plan(str(write_plan("- 1\n- 2\n", name="list.yaml")))


def test_empty_stages_rejected(plan_dict):
    plan_dict["stages"] = []
    with pytest.raises(ConfigurationError) as exc_info:
        build_plan(plan_dict)
    assert exc_info.value.code == ErrorCode.CONFIG_INVALID


@pytest.mark.parametrize("metric,expression", [
    ("http_req_duration", "p95<500"),
    ("http_req_failed", "p(95)<1"),
    ("http_req_blocked", "avg<1"),
])
def test_invalid_threshold_rejected(plan_dict, metric, expression):
    plan_dict["thresholds"] = {metric: [expression]}
    with pytest.raises(ConfigurationError) as exc_info:
        build_plan(plan_dict)
    assert exc_info.value.code == ErrorCode.CONFIG_BAD_THRESHOLD
    assert str(exc_info.value).startswith(f"[{ErrorCode.CONFIG_BAD_THRESHOLD}]")


def test_long_form_threshold(plan_dict):
    plan_dict["thresholds"] = {
        "http_req_failed": [{"threshold": "rate<0.1", "abort_on_fail": True}, "rate<0.5"],
        "checks{200 OK}": ["rate>0.9"],
    }
    rules = build_plan(plan_dict).threshold_rules()

    assert [(r.metric, r.expression, r.abort_on_fail) for r in rules] == [
        ("http_req_failed", "rate<0.1", True),
        ("http_req_failed", "rate<0.5", False),
        ("checks{200 OK}", "rate>0.9", False),
    ]


def test_custom_checks(plan_dict, make_result):
    plan_dict["checks"] = [
        {"name": "created", "status": 201, "mode": "equals"},
        {"name": "not throttled", "status": 429},
    ]
    checks = build_plan(plan_dict).check_map()

    assert list(checks) == ["created", "not throttled"]
    assert checks["created"](make_result(201)) is True
    assert checks["not throttled"](make_result(429)) is False


def test_duplicate_check_names_rejected(plan_dict):
    plan_dict["checks"] = [
        {"name": "ok", "status": 200, "mode": "equals"},
        {"name": "ok", "status": 201, "mode": "equals"},
    ]
    with pytest.raises(ConfigurationError, match="Duplicate check names"):
        build_plan(plan_dict)


def test_check_config_mode_validation():
    with pytest.raises(ValidationError):
        CheckConfig(name="x", status=200, mode="contains")
    assert CheckConfig(name="x", status=502).mode == "not_equals"
