"""
Aggregation stage: collapse records into one record per group.
"""

from typing import Any, Callable

from src.core.models import AggregationConfig
from src.core.records import get_path, set_path
from src.observability.logger import get_logger

logger = get_logger(__name__)

GROUP_KEY_SEPARATOR = "|"


def _numbers(values: list[Any]) -> list[float]:
    numbers = []
    for value in values:
        if value is None or isinstance(value, bool):
            continue
        try:
            numbers.append(float(value) if not isinstance(value, int) else value)
        except (TypeError, ValueError):
            continue
    return numbers


def _sum(values: list[Any]) -> float:
    return sum(_numbers(values))


def _avg(values: list[Any]) -> float:
    numbers = _numbers(values)
    return sum(numbers) / len(numbers) if numbers else 0


def _min(values: list[Any]) -> Any:
    numbers = _numbers(values)
    return min(numbers) if numbers else None


def _max(values: list[Any]) -> Any:
    numbers = _numbers(values)
    return max(numbers) if numbers else None


AGGREGATE_FUNCTIONS: dict[str, Callable[[list[Any]], Any]] = {
    "count": len,
    "sum": _sum,
    "avg": _avg,
    "min": _min,
    "max": _max,
    "first": lambda values: values[0] if values else None,
    "last": lambda values: values[-1] if values else None,
}


def group_key(record: dict[str, Any], group_by: list[str]) -> str:
    return GROUP_KEY_SEPARATOR.join(
        "" if get_path(record, field) is None else str(get_path(record, field))
        for field in group_by
    )


def aggregate(records: list[dict[str, Any]], config: AggregationConfig) -> list[dict[str, Any]]:
    """
    Group records and reduce them.

    Groups are keyed by the string form of the ``group_by`` values and keep
    first-seen order. Each output record carries the group-by fields (from
    the first record of the group) and one ``<field>_<function>`` entry per
    configured function; an unknown function yields None. Missing and None
    values are left out before a function runs.

    Args:
        records: Validated records
        config: Aggregation configuration

    Returns:
        One record per group
    """
    groups: dict[str, list[dict[str, Any]]] = {}
    for record in records:
        groups.setdefault(group_key(record, config.group_by), []).append(record)

    output = []
    for members in groups.values():
        aggregated: dict[str, Any] = {}
        for field in config.group_by:
            aggregated = set_path(aggregated, field, get_path(members[0], field))

        for agg in config.functions:
            reducer = AGGREGATE_FUNCTIONS.get(agg.function)
            if reducer is None:
                logger.warning("Unknown aggregation function", extra={"function_name": agg.function})
                value = None
            else:
                values = [get_path(member, agg.field) for member in members]
                value = reducer([v for v in values if v is not None])
            aggregated[f"{agg.field}_{agg.function}"] = value

        output.append(aggregated)

    return output
