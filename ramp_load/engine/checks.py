"""
Named per-request checks.

A check is a boolean predicate over a RequestResult. Most default checks are
"status is not X" predicates: they only fail for the listed error codes, so a
302 or a 404 passes every check except "200 OK".
"""

from typing import Callable, Dict, Iterable, TYPE_CHECKING

if TYPE_CHECKING:
    from ramp_load.engine.aggregator import RequestResult

CheckPredicate = Callable[["RequestResult"], bool]
CheckMap = Dict[str, CheckPredicate]

CHECK_MODE_EQUALS = "equals"
CHECK_MODE_NOT_EQUALS = "not_equals"


def status_equals(status: int) -> CheckPredicate:
    """Predicate passing only when the response status is ``status``."""
    def predicate(result: "RequestResult") -> bool:
        return result.status_code == status
    return predicate


def status_not_equals(status: int) -> CheckPredicate:
    """Predicate failing only when the response status is ``status``."""
    def predicate(result: "RequestResult") -> bool:
        return result.status_code != status
    return predicate


def build_check(status: int, mode: str) -> CheckPredicate:
    if mode == CHECK_MODE_EQUALS:
        return status_equals(status)
    if mode == CHECK_MODE_NOT_EQUALS:
        return status_not_equals(status)
    raise ValueError(f"Unknown check mode '{mode}'")


def default_checks() -> CheckMap:
    """The checks applied when a plan does not configure its own."""
    return {
        "200 OK": status_equals(200),
        "[NETWORK ERROR]": status_not_equals(0),
        "401 Unauthorized": status_not_equals(401),
        "502 Bad Gateway": status_not_equals(502),
        "503 Service Unavailable": status_not_equals(503),
        "504 Gateway Timeout": status_not_equals(504),
    }


def apply_checks(result: "RequestResult", checks: CheckMap) -> Iterable[tuple]:
    """Yield ``(name, passed)`` for each check."""
    for name, predicate in checks.items():
        yield name, bool(predicate(result))
