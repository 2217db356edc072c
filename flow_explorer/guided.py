"""Oracle-guided recording: let the oracle drive the browser and keep the action trail.

Complements the exhaustive explorer. The oracle proposes one action at a time
from the current page and the actions so far; the recorder executes it and
appends it to the history. The resulting raw action sequence is what
`TestCaseSynthesizer.from_actions` consumes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List

from .driver import Driver
from .errors import DriverError, OracleError, TransientDriverError
from .fingerprint import fingerprint
from .knowledge import Action, End, ExplorationGraph, State
from .oracle import Oracle

logger = logging.getLogger(__name__)


@dataclass
class Recording:
    start_url: str
    actions: List[Action] = field(default_factory=list)
    visited: List[str] = field(default_factory=list)  # fingerprints in visit order
    end_reason: str = ""


class GuidedRecorder:
    """Runs propose -> apply -> observe until the oracle ends or a limit is hit.

    Pages seen along the way, and the actions that linked them, are kept in
    `self.graph` so the trail can also be enumerated like an explored graph.
    """

    def __init__(self, driver: Driver, oracle: Oracle, max_steps: int = 25, max_failures: int = 3) -> None:
        self.driver = driver
        self.oracle = oracle
        self.max_steps = max_steps
        self.max_failures = max_failures
        self.graph = ExplorationGraph()

    async def _current_state(self) -> State:
        obs = await self.driver.observe()
        fp = fingerprint(obs.url)
        existing = self.graph.get_state(fp)
        if existing is not None:
            return existing
        elements = await self.driver.list_candidate_elements(obs)
        return self.graph.get_or_create(fp, lambda: State(fp, obs.url, obs.title, tuple(elements)))

    async def record(self, start_url: str) -> Recording:
        """Record one walk. A driver failure ends it; the actions so far are kept."""
        rec = Recording(start_url=start_url)
        try:
            await self._walk(rec)
        except DriverError as exc:
            logger.warning("Guided recording from %s stopped by driver error: %s", start_url, exc)
            rec.end_reason = f"driver error: {exc}"
        logger.info("Recorded %d actions from %s (%s)", len(rec.actions), start_url, rec.end_reason)
        return rec

    async def _walk(self, rec: Recording) -> None:
        await self.driver.navigate(rec.start_url)
        state = await self._current_state()
        rec.visited.append(state.fingerprint)
        failures = 0

        while len(rec.actions) < self.max_steps:
            try:
                action = await self.oracle.propose_next_action(state, rec.actions)
            except OracleError as exc:
                logger.warning("No usable proposal, ending recording: %s", exc)
                action = End(reasoning="oracle unavailable")

            if isinstance(action, End):
                rec.end_reason = action.reasoning or "oracle ended the workflow"
                break

            try:
                await self.driver.apply(None, action)
            except TransientDriverError as exc:
                failures += 1
                logger.warning("Proposed %s failed (%d/%d): %s", action.kind, failures, self.max_failures, exc)
                if failures >= self.max_failures:
                    rec.end_reason = "too many failed actions"
                    break
                continue

            failures = 0
            rec.actions.append(action)
            target = await self._current_state()
            self.graph.add_transition(state, target, action)
            if target.fingerprint in rec.visited:
                logger.debug("Back on already visited %s; the oracle decides whether to backtrack", target.fingerprint)
            rec.visited.append(target.fingerprint)
            state = target
        else:
            rec.end_reason = "step limit reached"
