"""
Pytest configuration and shared fixtures.
"""

import logging
import sys
from pathlib import Path
from typing import Any, Callable, Dict

import pytest
import yaml

# Add project root to path
_project_root = Path(__file__).resolve().parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

from ramp_load.engine.aggregator import RequestResult  # noqa: E402


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Drop handlers the CLI attaches so they don't outlive a test's streams."""
    root = logging.getLogger("ramp_load")
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
    root.setLevel(level)


@pytest.fixture
def plan_dict() -> Dict[str, Any]:
    """A small valid plan as a dictionary."""
    return {
        "version": "1.0",
        "metadata": {"name": "unit plan"},
        "target": {
            "url": "http://orders.test/api/orders",
            "username": "user",
            "password": "secret",
            "timeout": "5s",
        },
        "stages": [
            {"duration": "30s", "target": 50},
            {"duration": "30s", "target": 100},
            {"duration": "30s", "target": 200},
            {"duration": "30s", "target": 400},
            {"duration": "20s", "target": 0},
        ],
        "thresholds": {
            "http_req_duration": ["p(95)<500"],
            "http_req_failed": ["rate<0.01"],
        },
    }


@pytest.fixture
def write_plan(tmp_path) -> Callable[[Any], Path]:
    """Write a plan (dict or raw YAML text) to a temp file and return its path."""
    def _write(content: Any, name: str = "plan.yaml") -> Path:
        path = tmp_path / name
        if isinstance(content, str):
            path.write_text(content, encoding="utf-8")
        else:
            path.write_text(yaml.safe_dump(content, sort_keys=False), encoding="utf-8")
        return path
    return _write


@pytest.fixture
def make_result() -> Callable[..., RequestResult]:
    """Factory for RequestResult with sensible defaults."""
    def _make(status_code: int = 200, latency_ms: float = 10.0, vu_id: int = 1,
              iteration: int = 0, network_error: bool = False) -> RequestResult:
        return RequestResult(
            vu_id=vu_id,
            iteration=iteration,
            status_code=status_code,
            latency_ms=latency_ms,
            network_error=network_error,
            error="ConnectError" if network_error else None,
        )
    return _make
