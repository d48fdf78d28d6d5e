"""Unified result types and the path-outcome chain shared by every execution path."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from typing import Any, Union

from boardpilot.errors import StructuredError
from boardpilot.tools.context import ObjectArena

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Unified result
# ---------------------------------------------------------------------------


@dataclass
class ExecutionResult:
    """What every path returns for one command."""

    success: bool
    message: str
    objects_created: list[str] = field(default_factory=list)
    objects_updated: list[str] = field(default_factory=list)
    objects_deleted: list[str] = field(default_factory=list)
    focus: dict[str, float] | None = None
    model: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    tool_calls_count: int = 0
    duration_ms: int = 0
    route_source: str | None = None
    route_confidence: float | None = None
    route_reason: str | None = None

    @property
    def mutated(self) -> bool:
        return bool(self.objects_created or self.objects_updated or self.objects_deleted)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def build_summary(created: list[str], updated: list[str], deleted: list[str] | None = None) -> str:
    parts = []
    if created:
        parts.append(f"{len(created)} object(s) created")
    if updated:
        parts.append(f"{len(updated)} object(s) updated")
    if deleted:
        parts.append(f"{len(deleted)} object(s) deleted")
    return f"Done! {', '.join(parts)}." if parts else "Command completed."


def compute_focus_bounds(created_ids: list[str], arena: ObjectArena) -> dict[str, float] | None:
    """Bounding box over the created objects still present, for the client to pan to."""
    created = [o for o in (arena.get(i) for i in created_ids) if o is not None]
    if not created:
        return None
    return {
        "min_x": min(o.x for o in created),
        "min_y": min(o.y for o in created),
        "max_x": max(o.x + o.width for o in created),
        "max_y": max(o.y + o.height for o in created),
    }


# ---------------------------------------------------------------------------
# Path outcomes
# ---------------------------------------------------------------------------


@dataclass
class Ok:
    result: ExecutionResult


@dataclass
class Retry:
    """This path could not serve the command; try the next one."""

    reason: str
    usage: tuple[int, int] = (0, 0)
    partial: ExecutionResult | None = None


@dataclass
class Fatal:
    error: StructuredError
    partial: ExecutionResult | None = None


PathOutcome = Union[Ok, Retry, Fatal]


@dataclass
class ExecutionPath:
    name: str
    run: Callable[[], PathOutcome]


def run_fallback_chain(paths: list[ExecutionPath]) -> tuple[PathOutcome, str, list[Retry]]:
    """Run paths in order until one returns Ok or Fatal.

    Returns the deciding outcome, the name of the path that produced it, and
    the Retry outcomes collected along the way (their token usage and
    partial work still belong to the command). If every path asks to retry,
    the last Retry is returned.
    """
    retries: list[Retry] = []
    outcome: PathOutcome = Retry("no execution path")
    name = ""
    for path in paths:
        name = path.name
        outcome = path.run()
        match outcome:
            case Retry(reason=reason):
                logger.warning("Path %s fell back: %s", path.name, reason)
                retries.append(outcome)
            case Ok() | Fatal():
                return outcome, path.name, retries
    return outcome, name, retries
