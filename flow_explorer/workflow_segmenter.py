"""Clusters visited states into workflows using oracle classification."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from .errors import OracleError
from .knowledge import State, Workflow
from .oracle import Oracle, WorkflowClassification

logger = logging.getLogger(__name__)


class WorkflowSegmenter:
    """Tags states with workflow ids. Advisory only: traversal never waits on it.

    Policy for each classified state:

    * ``continues_current`` false            -> open a new workflow seeded with the state
    * true and a current workflow exists      -> add the state to it
    * true but no current workflow (run start) -> open a new workflow, explicitly
    * oracle failure (after retries)          -> treated as false
    """

    def __init__(self, oracle: Oracle, prefix: str = "workflow") -> None:
        self._oracle = oracle
        self._prefix = prefix
        self._workflows: Dict[str, Workflow] = {}
        self._current: Optional[Workflow] = None

    @property
    def current(self) -> Optional[Workflow]:
        return self._current

    @property
    def workflows(self) -> Dict[str, Workflow]:
        return self._workflows

    async def classify(self, state: State) -> Workflow:
        """Classify `state` and return the workflow it was tagged with."""
        try:
            verdict = await self._oracle.classify_workflow(state, self._current)
        except OracleError as exc:
            logger.warning("Workflow classification failed for %s, starting new workflow: %s", state.fingerprint, exc)
            verdict = WorkflowClassification(continues_current=False, reason="oracle unavailable")

        if verdict.continues_current and self._current is not None:
            self._current.add(state.fingerprint, verdict.reason)
            logger.debug("State %s continues %s", state.fingerprint, self._current.workflow_id)
            return self._current

        if verdict.continues_current:
            reason = verdict.reason or "first state of the run"
            logger.debug("State %s continues nothing (no current workflow), opening one", state.fingerprint)
        else:
            reason = verdict.reason
        return self._open(state, reason)

    def _open(self, state: State, reason: str) -> Workflow:
        wf = Workflow(workflow_id=f"{self._prefix}-{len(self._workflows) + 1}")
        wf.add(state.fingerprint, reason)
        self._workflows[wf.workflow_id] = wf
        self._current = wf
        logger.info("Opened %s at %s (%s)", wf.workflow_id, state.fingerprint, reason)
        return wf

    def tag(self, workflow_id: str, fp: str, reason: str = "") -> None:
        """Attach `fp` to an additional workflow (states may belong to several journeys)."""
        self._workflows[workflow_id].add(fp, reason)

    def workflow_of(self, fp: str) -> Optional[Workflow]:
        """The first workflow `fp` was classified into."""
        for wf in self._workflows.values():
            if fp in wf:
                return wf
        return None

    def workflows_containing(self, fp: str) -> List[Workflow]:
        return [wf for wf in self._workflows.values() if fp in wf]
