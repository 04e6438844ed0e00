from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from .cache import CacheStore
from .models import PartialCascadeFailure

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CascadeStep:
    name: str
    action: Callable[[], Any]


@dataclass(slots=True)
class CascadeReport:
    label: str
    completed: list[str] = field(default_factory=list)
    failures: list[PartialCascadeFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def failed_steps(self) -> list[str]:
        return [failure.step for failure in self.failures]


class Cascade:
    """Ordered best-effort steps run after a mutation.

    A failing step is logged and recorded; later steps still run. Nothing is
    rolled back, so a partial run leaves derived cache entries to expire by
    TTL.
    """

    def __init__(self, label: str, **context: Any) -> None:
        self.label = label
        self.context = {key: value for key, value in context.items() if value is not None}
        self.steps: list[CascadeStep] = []

    def step(self, name: str, action: Callable[[], Any]) -> "Cascade":
        self.steps.append(CascadeStep(name, action))
        return self

    def invalidate(self, cache: CacheStore, key: Optional[str]) -> "Cascade":
        if key:
            self.steps.append(CascadeStep(f"invalidate {key}", lambda: cache.invalidate(key)))
        return self

    def invalidate_prefix(self, cache: CacheStore, prefix: Optional[str]) -> "Cascade":
        if prefix:
            self.steps.append(
                CascadeStep(f"invalidate {prefix}*", lambda: cache.invalidate_prefix(prefix))
            )
        return self

    async def run(self) -> CascadeReport:
        report = CascadeReport(self.label)
        for step in self.steps:
            try:
                result = step.action()
                if inspect.isawaitable(result):
                    result = await result
            except Exception as exc:
                failure = PartialCascadeFailure(step.name, exc)
                report.failures.append(failure)
                logger.warning(
                    "%s: step '%s' failed (%s); continuing %s",
                    self.label,
                    step.name,
                    exc,
                    _format_context(self.context),
                )
                continue
            if result is False:
                report.failures.append(
                    PartialCascadeFailure(step.name, RuntimeError("step reported failure"))
                )
                logger.warning(
                    "%s: step '%s' reported failure; continuing %s",
                    self.label,
                    step.name,
                    _format_context(self.context),
                )
                continue
            report.completed.append(step.name)
        return report


def _format_context(context: dict[str, Any]) -> str:
    if not context:
        return ""
    return "[" + ", ".join(f"{key}={value}" for key, value in sorted(context.items())) + "]"
