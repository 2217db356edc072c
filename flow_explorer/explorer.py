"""Graph explorer: depth-first traversal of a web application with backtracking.

The explorer owns one driver session, one `ExplorationGraph` and one budget per
run. The recursion stack *is* the navigation stack: every frame enters with the
driver on its State and leaves with the driver restored to it, on every exit
path, through the `_anchored` guard.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncContextManager, AsyncIterator, Callable, Dict, List, Optional, Sequence, Tuple

from .budget import ExplorationBudget
from .driver import Driver, Observation
from .errors import FatalDriverError, TransientDriverError
from .fingerprint import fingerprint, is_same_origin, should_skip_url
from .input_generator import InputValueGenerator
from .knowledge import Action, Element, ExplorationGraph, State, Workflow
from .oracle import Oracle
from .workflow_segmenter import WorkflowSegmenter

logger = logging.getLogger(__name__)


class ExplorerPhase(str, Enum):
    VISITING = "visiting"
    EXTRACTING_ACTIONS = "extracting_actions"
    APPLYING_ACTION = "applying_action"
    BACKTRACKING = "backtracking"
    HALTED = "halted"


class HaltReason(str, Enum):
    BUDGET_EXHAUSTED = "budget_exhausted"
    NO_FRONTIER = "no_frontier"
    FATAL_DRIVER_ERROR = "fatal_driver_error"


@dataclass
class FailedAction:
    state: str
    element: str
    error: str


@dataclass
class ExplorationResult:
    """Whatever was discovered, including after a halt caused by an error."""

    start_url: str
    graph: ExplorationGraph
    halt_reason: HaltReason
    workflows: Dict[str, Workflow] = field(default_factory=dict)
    error: Optional[str] = None
    visits: int = 0
    elapsed: float = 0.0
    failures: List[FailedAction] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start_url": self.start_url,
            "halt_reason": self.halt_reason.value,
            "error": self.error,
            "visits": self.visits,
            "elapsed": round(self.elapsed, 3),
            "states": self.graph.state_count,
            "transitions": self.graph.transition_count,
            "workflows": [wf.to_dict() for wf in self.workflows.values()],
            "failures": [f.__dict__ for f in self.failures],
        }


class GraphExplorer:
    """Builds the exploration graph for one site with one driver session."""

    def __init__(
        self,
        driver: Driver,
        oracle: Oracle | None = None,
        budget: ExplorationBudget | None = None,
        inputs: InputValueGenerator | None = None,
        same_origin_only: bool = True,
    ) -> None:
        self.driver = driver
        self.graph = ExplorationGraph()
        self.budget = budget or ExplorationBudget()
        self.segmenter = WorkflowSegmenter(oracle) if oracle is not None else None
        self.phase = ExplorerPhase.VISITING
        self.halt_reason: Optional[HaltReason] = None
        self.failures: List[FailedAction] = []
        self._inputs = inputs or InputValueGenerator()
        self._same_origin_only = same_origin_only
        self._start_url = ""
        # per-state element keys already expanded; idempotent across revisits
        self._expanded: Dict[str, set[str]] = {}
        self._stack: List[str] = []
        self._budget_hit = False

    # ------------------------------------------------------------------
    async def explore(self, start_url: str) -> ExplorationResult:
        """Entry-point: crawl from `start_url` until the budget or the frontier runs out."""
        self._start_url = start_url
        self.budget.start()
        self._budget_hit = False
        error: Optional[str] = None
        started = time.monotonic()

        try:
            self.phase = ExplorerPhase.VISITING
            await self.driver.navigate(start_url)
            obs, fp = await self._observe()
            root, _ = await self._materialize(obs, fp)
            if root is not None:
                await self._visit(root, depth=0)
            reason = HaltReason.BUDGET_EXHAUSTED if self._budget_hit else HaltReason.NO_FRONTIER
        except FatalDriverError as exc:
            logger.error("Fatal driver error, halting exploration: %s", exc)
            reason = HaltReason.FATAL_DRIVER_ERROR
            error = str(exc)
        except TransientDriverError as exc:
            # only reachable when the start page itself cannot be loaded or re-anchored
            logger.warning("Could not keep the session on the start page: %s", exc)
            reason = HaltReason.BUDGET_EXHAUSTED if self._budget_hit else HaltReason.NO_FRONTIER
            error = str(exc)

        self.phase = ExplorerPhase.HALTED
        self.halt_reason = reason
        logger.info(
            "Exploration halted (%s): %d states, %d transitions, %d failed actions",
            reason.value, self.graph.state_count, self.graph.transition_count, len(self.failures),
        )
        return ExplorationResult(
            start_url=start_url,
            graph=self.graph,
            halt_reason=reason,
            workflows=dict(self.segmenter.workflows) if self.segmenter else {},
            error=error,
            visits=self.budget.visits,
            elapsed=time.monotonic() - started,
            failures=list(self.failures),
        )

    def cancel(self) -> None:
        """Operator abort: observed at the next budget checkpoint, frames unwind normally."""
        logger.info("Exploration cancelled")
        self.budget.cancel()

    # ------------------------------------------------------------------
    # traversal ---------------------------------------------------------

    async def _visit(self, state: State, depth: int) -> None:
        self.phase = ExplorerPhase.VISITING
        self._stack.append(state.fingerprint)
        logger.debug("Visiting %s (depth %d, stack %s)", state.fingerprint, depth, self._stack)
        try:
            if not self.budget.allows_depth(depth):
                logger.info("Maximum depth %d reached at %s", self.budget.max_depth, state.fingerprint)
                self._budget_hit = True
                return

            tried = self._expanded.setdefault(state.fingerprint, set())
            for element in state.elements:
                if element.key in tried:
                    continue
                if self.budget.exhausted:
                    logger.info("Budget exhausted, not expanding further from %s", state.fingerprint)
                    self._budget_hit = True
                    break
                tried.add(element.key)

                if self._out_of_scope(element.href):
                    logger.debug("Skipping out-of-scope %s -> %s", element.key, element.href)
                    continue
                action = self._inputs.action_for(element)
                if action is None:
                    continue
                await self._try_candidate(state, element, action, depth)
        finally:
            self._stack.pop()
            self.phase = ExplorerPhase.BACKTRACKING

    async def _try_candidate(self, state: State, element: Element, action: Action, depth: int) -> None:
        async with self._anchored(state):
            self.phase = ExplorerPhase.APPLYING_ACTION
            try:
                new_url = await self.driver.apply(element, action)
                if self._out_of_scope(new_url):
                    raise TransientDriverError(f"navigated out of scope to {new_url}")
                obs, fp = await self._observe()

                if fp in self._stack:
                    target = self.graph.get_state(fp)
                    self.graph.add_transition(state, target, action)
                    logger.debug("Cycle: %s -> %s closes a loop on the current path", state.fingerprint, fp)
                    return

                target, created = await self._materialize(obs, fp)
                if target is None:
                    return
                inserted = self.graph.add_transition(state, target, action)
                if created:
                    logger.info("Discovered %s via %s", fp, element.key)
                    await self._visit(target, depth + 1)
                elif inserted:
                    logger.debug("New edge %s -> %s (known state)", state.fingerprint, fp)
            except TransientDriverError as exc:
                logger.warning("Action %s on %s failed: %s", element.key, state.fingerprint, exc)
                self.failures.append(FailedAction(state.fingerprint, element.key, str(exc)))

    async def _materialize(self, obs: Observation, fp: str) -> Tuple[Optional[State], bool]:
        """Return (state, created). None when the state is new but the budget has no visits left."""
        existing = self.graph.get_state(fp)
        if existing is not None:
            return existing, False
        if not self.budget.can_visit():
            logger.info("Budget exhausted, not recording new state %s", fp)
            self._budget_hit = True
            return None, False

        self.phase = ExplorerPhase.EXTRACTING_ACTIONS
        elements = await self.driver.list_candidate_elements(obs)
        # time may run out or cancel() may land while extracting
        if not self.budget.can_visit():
            logger.info("Budget exhausted during extraction, not recording new state %s", fp)
            self._budget_hit = True
            return None, False
        state = self.graph.get_or_create(
            fp, lambda: State(fingerprint=fp, url=obs.url, title=obs.title, elements=tuple(elements))
        )
        self.budget.record_visit()
        if self.segmenter is not None:
            await self.segmenter.classify(state)
        return state, True

    # ------------------------------------------------------------------
    # navigation stack discipline ---------------------------------------

    @asynccontextmanager
    async def _anchored(self, state: State) -> AsyncIterator[None]:
        """Leave the driver on `state` when the block exits, however it exits."""
        fatal = False
        try:
            yield
        except FatalDriverError:
            fatal = True
            raise
        finally:
            if not fatal:
                await self._restore(state)

    async def _restore(self, state: State) -> None:
        _, fp = await self._observe()
        if fp == state.fingerprint:
            return
        self.phase = ExplorerPhase.BACKTRACKING
        try:
            await self.driver.back()
            _, fp = await self._observe()
            if fp == state.fingerprint:
                return
            logger.debug("back() landed on %s instead of %s, navigating directly", fp, state.fingerprint)
        except TransientDriverError as exc:
            logger.debug("back() failed (%s), navigating directly to %s", exc, state.url)
        await self.driver.navigate(state.url)
        _, fp = await self._observe()
        if fp != state.fingerprint:
            raise TransientDriverError(f"driver desynced: expected {state.fingerprint}, at {fp}")

    async def _observe(self) -> Tuple[Observation, str]:
        obs = await self.driver.observe()
        return obs, fingerprint(obs.url)

    def _out_of_scope(self, url: Optional[str]) -> bool:
        if url is None:
            return False
        if should_skip_url(url):
            return True
        return self._same_origin_only and not is_same_origin(url, self._start_url)


async def explore_many(
    start_urls: Sequence[str],
    driver_factory: Callable[[], AsyncContextManager[Driver]],
    oracle: Oracle | None = None,
    budget_factory: Callable[[], ExplorationBudget] = ExplorationBudget,
    inputs: InputValueGenerator | None = None,
    max_workers: int = 2,
) -> List[ExplorationResult]:
    """Run independent explorations, at most `max_workers` driver sessions at a time.

    Each run gets its own driver, graph, budget and segmenter; nothing mutable is shared.
    """
    pool = asyncio.Semaphore(max_workers)

    async def run(url: str) -> ExplorationResult:
        async with pool:
            async with driver_factory() as driver:
                explorer = GraphExplorer(driver, oracle=oracle, budget=budget_factory(), inputs=inputs)
                return await explorer.explore(url)

    return list(await asyncio.gather(*(run(u) for u in start_urls)))
