"""Ordered lifecycle steps with an explicit per-step failure policy.

A lifecycle operation spans two services without a shared transaction, so each
step declares what its failure means instead of relying on call order:

- REQUIRED: the failure aborts the operation and propagates to the caller.
- BEST_EFFORT: the failure is logged and recorded; later steps still run.

Only the declared ``recoverable`` exception types are subject to the policy.
Anything else is a bug and always propagates.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TypeVar

from garage_backend.errors import LifecycleError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StepPolicy(str, Enum):
    REQUIRED = "required"
    BEST_EFFORT = "best_effort"


@dataclass(frozen=True)
class StepOutcome:
    name: str
    policy: StepPolicy
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class Saga:
    name: str
    context: dict[str, object] = field(default_factory=dict)
    outcomes: list[StepOutcome] = field(default_factory=list)

    def _context_str(self) -> str:
        return " ".join(f"{k}={v}" for k, v in self.context.items())

    async def step(
        self,
        name: str,
        action: Callable[[], Awaitable[T]],
        *,
        policy: StepPolicy = StepPolicy.REQUIRED,
        recoverable: tuple[type[Exception], ...] = (LifecycleError,),
    ) -> T | None:
        try:
            result = await action()
        except recoverable as exc:
            self.outcomes.append(StepOutcome(name=name, policy=policy, error=exc))
            if policy is StepPolicy.REQUIRED:
                logger.info(
                    "%s aborted step=%s %s error=%s", self.name, name, self._context_str(), exc
                )
                raise
            logger.warning(
                "%s best-effort step failed step=%s %s",
                self.name,
                name,
                self._context_str(),
                exc_info=exc,
            )
            return None
        self.outcomes.append(StepOutcome(name=name, policy=policy))
        return result

    async def require(
        self,
        name: str,
        action: Callable[[], Awaitable[T]],
        *,
        recoverable: tuple[type[Exception], ...] = (LifecycleError,),
    ) -> T:
        """A REQUIRED step: returns the action's own result or raises."""
        try:
            result = await action()
        except recoverable as exc:
            self.outcomes.append(StepOutcome(name=name, policy=StepPolicy.REQUIRED, error=exc))
            logger.info("%s aborted step=%s %s error=%s", self.name, name, self._context_str(), exc)
            raise
        self.outcomes.append(StepOutcome(name=name, policy=StepPolicy.REQUIRED))
        return result

    async def fan_out(
        self,
        steps: Sequence[tuple[str, Callable[[], Awaitable[T]]]],
        *,
        policy: StepPolicy = StepPolicy.BEST_EFFORT,
        recoverable: tuple[type[Exception], ...] = (LifecycleError,),
        limit: int | None = None,
    ) -> list[T | None]:
        """Run independent steps concurrently; results keep the input order."""
        semaphore = asyncio.Semaphore(limit) if limit and limit > 0 else None

        async def _run(name: str, action: Callable[[], Awaitable[T]]) -> T | None:
            if semaphore is None:
                return await self.step(name, action, policy=policy, recoverable=recoverable)
            async with semaphore:
                return await self.step(name, action, policy=policy, recoverable=recoverable)

        return list(await asyncio.gather(*(_run(n, a) for n, a in steps)))

    def failures(self) -> list[StepOutcome]:
        return [o for o in self.outcomes if not o.ok]
