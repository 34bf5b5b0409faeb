"""
Plan normalization.

Turns a raw plan document into an ordered list of ``ResourceChange``
records. The raw plan is the planning tool's output, treated as an opaque
contract:

    {
        "resources": [
            {
                "address": "aws_s3_bucket.assets",
                "type": "aws_s3_bucket",
                "actions": ["update"],
                "before": {"tags": {"team": "web"}},
                "after": {"tags": {"team": "platform"}},
                "dependsOn": ["aws_kms_key.assets"]
            }
        ]
    }

The output is a topological order over ``dependsOn``: every dependency
precedes its dependents. Resources without a dependency relationship keep
their input order. Any structural violation raises ``MalformedPlanError``
and no partial output is produced.

Usage:
    from driftfix.normalizer import normalize_plan

    changes = normalize_plan(json.loads(plan_path.read_text()))
"""

import heapq
from collections.abc import Mapping, Sequence
from typing import Any

from driftfix.errors import MalformedPlanError
from driftfix.logging_config import get_logger, log_with_context
from driftfix.models import ChangeAction, ResourceChange

logger = get_logger(__name__)

_VALID_ACTIONS = {action.value for action in ChangeAction}

# Accepted spellings per field; the first one is canonical
_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "address": ("address",),
    "type": ("type", "resourceType", "resource_type"),
    "actions": ("actions",),
    "before": ("before",),
    "after": ("after",),
    "dependsOn": ("dependsOn", "depends_on"),
}


def _lookup(entry: Mapping[str, Any], field: str) -> tuple[bool, Any]:
    for key in _FIELD_ALIASES[field]:
        if key in entry:
            return True, entry[key]
    return False, None


def _require(entry: Mapping[str, Any], field: str, index: int, address: str | None) -> Any:
    found, value = _lookup(entry, field)
    if not found or value is None:
        raise MalformedPlanError(
            f"Plan entry {index} is missing required field '{field}'",
            entry_index=index,
            address=address,
            field=field,
        )
    return value


def _parse_attributes(
    entry: Mapping[str, Any],
    field: str,
    index: int,
    address: str,
) -> dict[str, Any]:
    found, value = _lookup(entry, field)
    if not found or value is None:
        return {}
    if not isinstance(value, Mapping):
        raise MalformedPlanError(
            f"Plan entry '{address}' has non-object '{field}'",
            entry_index=index,
            address=address,
            field=field,
        )
    return dict(value)


def _parse_actions(raw: Any, index: int, address: str) -> tuple[ChangeAction, ...]:
    if isinstance(raw, str) or not isinstance(raw, Sequence) or not raw:
        raise MalformedPlanError(
            f"Plan entry '{address}' must have a non-empty list of actions",
            entry_index=index,
            address=address,
            field="actions",
        )
    actions: list[ChangeAction] = []
    for action in raw:
        if not isinstance(action, str) or action not in _VALID_ACTIONS:
            raise MalformedPlanError(
                f"Plan entry '{address}' has unknown action {action!r}",
                entry_index=index,
                address=address,
                field="actions",
            )
        parsed = ChangeAction(action)
        if parsed not in actions:
            actions.append(parsed)
    return tuple(actions)


def _parse_depends_on(raw: Any, index: int, address: str) -> tuple[str, ...]:
    if raw is None:
        return ()
    if isinstance(raw, str) or not isinstance(raw, Sequence):
        raise MalformedPlanError(
            f"Plan entry '{address}' has non-list 'dependsOn'",
            entry_index=index,
            address=address,
            field="dependsOn",
        )
    for dependency in raw:
        if not isinstance(dependency, str) or not dependency:
            raise MalformedPlanError(
                f"Plan entry '{address}' has invalid dependency {dependency!r}",
                entry_index=index,
                address=address,
                field="dependsOn",
            )
    return tuple(sorted(set(raw)))


def _parse_entry(entry: Any, index: int) -> ResourceChange:
    if not isinstance(entry, Mapping):
        raise MalformedPlanError(
            f"Plan entry {index} is not an object",
            entry_index=index,
        )

    address = _require(entry, "address", index, None)
    if not isinstance(address, str) or not address.strip():
        raise MalformedPlanError(
            f"Plan entry {index} has an empty or non-string address",
            entry_index=index,
            field="address",
        )

    resource_type = _require(entry, "type", index, address)
    if not isinstance(resource_type, str) or not resource_type.strip():
        raise MalformedPlanError(
            f"Plan entry '{address}' has an empty or non-string type",
            entry_index=index,
            address=address,
            field="type",
        )

    actions = _parse_actions(_require(entry, "actions", index, address), index, address)
    _, raw_depends_on = _lookup(entry, "dependsOn")

    return ResourceChange(
        address=address,
        resource_type=resource_type,
        actions=actions,
        before=_parse_attributes(entry, "before", index, address),
        after=_parse_attributes(entry, "after", index, address),
        depends_on=_parse_depends_on(raw_depends_on, index, address),
    )


def _topological_order(changes: list[ResourceChange]) -> list[ResourceChange]:
    """
    Order changes so every dependency precedes its dependents.

    Kahn's algorithm with a priority queue keyed on input position: among
    the changes whose dependencies are all emitted, the earliest in the
    input goes first. Addresses are unique, so position alone is a total
    order and no secondary key is needed.

    Raises:
        MalformedPlanError: If the dependency graph has a cycle
    """
    position = {change.address: i for i, change in enumerate(changes)}
    remaining = {change.address: len(change.depends_on) for change in changes}
    dependents: dict[str, list[str]] = {change.address: [] for change in changes}
    for change in changes:
        for dependency in change.depends_on:
            dependents[dependency].append(change.address)

    ready = [position[a] for a, count in remaining.items() if count == 0]
    heapq.heapify(ready)

    ordered: list[ResourceChange] = []
    while ready:
        change = changes[heapq.heappop(ready)]
        ordered.append(change)
        for dependent in dependents[change.address]:
            remaining[dependent] -= 1
            if remaining[dependent] == 0:
                heapq.heappush(ready, position[dependent])

    if len(ordered) != len(changes):
        cyclic = sorted(a for a, count in remaining.items() if count > 0)
        raise MalformedPlanError(
            f"Dependency cycle between: {', '.join(cyclic)}",
            address=cyclic[0],
            field="dependsOn",
        )
    return ordered


def _is_unchanged_no_op(change: ResourceChange) -> bool:
    return change.actions == (ChangeAction.NO_OP,) and not change.changed_attributes()


def normalize_plan(raw_plan: Any, drop_no_op: bool = True) -> list[ResourceChange]:
    """
    Normalize a raw plan document into ordered resource changes.

    Args:
        raw_plan: Parsed plan document with a ``resources`` list
        drop_no_op: Drop entries whose only action is ``no-op`` and whose
            ``before`` and ``after`` are equal. A ``no-op`` entry that still
            differs is kept and classified like any other change. Dropped
            entries are still validated and may be referenced by ``dependsOn``; such
            references count as satisfied and are removed.

    Returns:
        Resource changes in topological order

    Raises:
        MalformedPlanError: On a missing required field, unknown action,
            duplicate address, dangling dependency or dependency cycle

    Example:
        >>> changes = normalize_plan({"resources": [
        ...     {"address": "a.b", "type": "a", "actions": ["update"]},
        ... ]})
        >>> changes[0].address
        'a.b'
    """
    if not isinstance(raw_plan, Mapping):
        raise MalformedPlanError("Plan document must be an object")
    resources = raw_plan.get("resources")
    if resources is None:
        raise MalformedPlanError("Plan document is missing 'resources'", field="resources")
    if isinstance(resources, str) or not isinstance(resources, Sequence):
        raise MalformedPlanError("Plan 'resources' must be a list", field="resources")

    changes: list[ResourceChange] = []
    seen: dict[str, int] = {}
    for index, entry in enumerate(resources):
        change = _parse_entry(entry, index)
        if change.address in seen:
            raise MalformedPlanError(
                f"Duplicate address '{change.address}' at entries "
                f"{seen[change.address]} and {index}",
                entry_index=index,
                address=change.address,
                field="address",
            )
        seen[change.address] = index
        changes.append(change)

    for index, change in enumerate(changes):
        for dependency in change.depends_on:
            if dependency not in seen:
                raise MalformedPlanError(
                    f"'{change.address}' depends on '{dependency}' which is not in the plan",
                    entry_index=index,
                    address=change.address,
                    field="dependsOn",
                )

    ordered = _topological_order(changes)

    if drop_no_op:
        dropped = {change.address for change in ordered if _is_unchanged_no_op(change)}
        if dropped:
            ordered = [
                change.model_copy(
                    update={
                        "depends_on": tuple(d for d in change.depends_on if d not in dropped)
                    }
                )
                for change in ordered
                if change.address not in dropped
            ]
            log_with_context(
                logger,
                "debug",
                "Dropped unchanged no-op entries",
                dropped_count=len(dropped),
            )

    log_with_context(
        logger,
        "info",
        "Normalized plan",
        entry_count=len(resources),
        change_count=len(ordered),
    )
    return ordered
