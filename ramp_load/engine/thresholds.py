"""
Threshold rules and their evaluation.

Rules use the k6 expression syntax, keyed by metric name::

    http_req_duration: ["p(95)<500", "avg<200"]
    http_req_failed:   ["rate<0.01"]
    checks{200 OK}:    ["rate>0.99"]

Evaluation is a pure function of an AggregateStats snapshot.
"""

import operator
import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from ramp_load.engine.aggregator import AggregateStats

_EXPRESSION_RE = re.compile(
    r"^\s*(?P<agg>avg|min|max|med|count|rate|p\(\s*(?P<pct>\d+(?:\.\d+)?)\s*\))"
    r"\s*(?P<op><=|>=|==|<|>)\s*(?P<value>[-+]?\d+(?:\.\d+)?)\s*$"
)
_METRIC_RE = re.compile(r"^(?P<name>[a-z_]+)(?:\{(?P<tag>[^}]+)\})?$")

OPERATORS: Dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
}

# metric name -> aggregations it supports
METRIC_AGGREGATIONS: Dict[str, Tuple[str, ...]] = {
    "http_req_duration": ("avg", "min", "max", "med", "p"),
    "http_req_failed": ("rate",),
    "checks": ("rate",),
    "http_reqs": ("count", "rate"),
    "iterations": ("count", "rate"),
}


@dataclass(frozen=True)
class ThresholdRule:
    """
    One pass/fail bound on an aggregate metric.

    Attributes:
        metric: Metric name, optionally tagged (``checks{200 OK}``).
        expression: k6 expression such as ``p(95)<500``.
        abort_on_fail: Stop the run as soon as the rule fails mid-run.
    """
    metric: str
    expression: str
    abort_on_fail: bool = False

    @property
    def name(self) -> str:
        return f"{self.metric}: {self.expression}"


@dataclass(frozen=True)
class ParsedExpression:
    aggregation: str
    percentile: Optional[float]
    op: str
    bound: float


@dataclass(frozen=True)
class ThresholdResult:
    rule: ThresholdRule
    observed: float
    passed: bool


def parse_expression(expression: str) -> ParsedExpression:
    """
    Parse ``<aggregation> <op> <number>``.

    Raises:
        ValueError: If the expression is malformed.
    """
    match = _EXPRESSION_RE.match(expression)
    if not match:
        raise ValueError(
            f"Invalid threshold expression '{expression}'. "
            f"Expected e.g. 'p(95)<500', 'rate<0.01', 'avg<=200'"
        )
    agg = match.group("agg")
    pct = match.group("pct")
    if pct is not None:
        pct_value = float(pct)
        if not 0.0 <= pct_value <= 100.0:
            raise ValueError(f"Percentile out of range in '{expression}'")
        return ParsedExpression("p", pct_value, match.group("op"), float(match.group("value")))
    return ParsedExpression(agg, None, match.group("op"), float(match.group("value")))


def split_metric(metric: str) -> Tuple[str, Optional[str]]:
    """Split ``checks{200 OK}`` into ``("checks", "200 OK")``."""
    match = _METRIC_RE.match(metric.strip())
    if not match:
        raise ValueError(f"Invalid metric name '{metric}'")
    tag = match.group("tag")
    return match.group("name"), tag.strip() if tag else None


def validate_rule(rule: ThresholdRule) -> None:
    """
    Check that the rule's metric supports its aggregation.

    Raises:
        ValueError: For unknown metrics, tags on untaggable metrics, or
            unsupported aggregations.
    """
    name, tag = split_metric(rule.metric)
    if name not in METRIC_AGGREGATIONS:
        raise ValueError(
            f"Unknown threshold metric '{name}'. "
            f"Available metrics: {sorted(METRIC_AGGREGATIONS)}"
        )
    if tag is not None and name != "checks":
        raise ValueError(f"Metric '{name}' does not support tags")
    parsed = parse_expression(rule.expression)
    if parsed.aggregation not in METRIC_AGGREGATIONS[name]:
        raise ValueError(
            f"Aggregation '{parsed.aggregation}' is not supported for '{name}' "
            f"(supported: {', '.join(METRIC_AGGREGATIONS[name])})"
        )


def metric_value(stats: AggregateStats, metric: str, parsed: ParsedExpression) -> float:
    """Observed value of ``metric`` aggregated as the expression asks."""
    name, tag = split_metric(metric)
    agg = parsed.aggregation

    if name == "http_req_duration":
        if agg == "p":
            return stats.latency_percentile(parsed.percentile)
        return {
            "avg": stats.latency_avg,
            "min": stats.latency_min,
            "max": stats.latency_max,
            "med": stats.latency_med,
        }[agg]
    if name == "http_req_failed":
        return stats.failure_rate
    if name == "checks":
        if tag is None:
            return stats.checks_rate
        counts = stats.checks.get(tag)
        return counts.rate if counts is not None else 0.0
    if name in ("http_reqs", "iterations"):
        # One request per iteration
        if agg == "count":
            return float(stats.total_count)
        return stats.requests_per_second
    raise ValueError(f"Unknown threshold metric '{name}'")


class ThresholdEvaluator:
    """Evaluates ThresholdRules against an AggregateStats snapshot."""

    def evaluate_rule(self, stats: AggregateStats, rule: ThresholdRule) -> ThresholdResult:
        parsed = parse_expression(rule.expression)
        observed = metric_value(stats, rule.metric, parsed)
        passed = OPERATORS[parsed.op](observed, parsed.bound)
        return ThresholdResult(rule=rule, observed=observed, passed=passed)

    def evaluate(self, stats: AggregateStats, rules: Iterable[ThresholdRule]) -> Dict[str, ThresholdResult]:
        """
        Evaluate every rule.

        Args:
            stats: Snapshot to evaluate.
            rules: Rules to check.

        Returns:
            Mapping of rule name to result, in rule order.
        """
        return {rule.name: self.evaluate_rule(stats, rule) for rule in rules}

    def failing_abort_rules(self, stats: AggregateStats, rules: Iterable[ThresholdRule]) -> List[ThresholdResult]:
        """Results of ``abort_on_fail`` rules that currently fail."""
        return [
            result
            for result in (self.evaluate_rule(stats, r) for r in rules if r.abort_on_fail)
            if not result.passed
        ]

    @staticmethod
    def verdict(results: Dict[str, ThresholdResult]) -> bool:
        """Overall verdict: every rule passed."""
        return all(result.passed for result in results.values())
