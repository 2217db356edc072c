"""Shared fixtures: an in-memory browser over a site map and scripted oracles."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import pytest

from flow_explorer.driver import Observation
from flow_explorer.errors import FatalDriverError, OracleError, TransientDriverError
from flow_explorer.knowledge import (
    Action,
    Backtrack,
    Click,
    Element,
    ElementKind,
    End,
    FormField,
    FormFill,
    Navigate,
    State,
    Workflow,
)
from flow_explorer.oracle import SynthesizedTestCase, WorkflowClassification

ROOT = "https://shop.test/"


def url(path: str) -> str:
    return "https://shop.test" + path


def link(locator: str, href: Optional[str] = None, text: str = "") -> Element:
    return Element(ElementKind.LINK, locator, text=text or locator, href=href)


def button(locator: str, text: str = "") -> Element:
    return Element(ElementKind.BUTTON, locator, text=text or locator)


def form(locator: str, fields: Sequence[FormField], submit: Optional[str] = None) -> Element:
    return Element(ElementKind.FORM, locator, fields=tuple(fields), submit_locator=submit)


@dataclass
class Page:
    title: str
    elements: List[Element] = field(default_factory=list)
    # locator -> url the interaction lands on; missing means the page does not change
    targets: Dict[str, str] = field(default_factory=dict)


def site_of(pages: Dict[str, Dict[str, str]]) -> Dict[str, Page]:
    """Build a site where every page only has links: {url: {locator: target_url}}."""
    site: Dict[str, Page] = {}
    for page_url, links in pages.items():
        site[page_url] = Page(
            title=page_url.rsplit("/", 1)[-1] or "home",
            elements=[link(loc, href=target) for loc, target in links.items()],
            targets=dict(links),
        )
    return site


class FakeDriver:
    """Browser double: a current URL plus a history stack, driven by a site map."""

    def __init__(
        self,
        site: Dict[str, Page],
        fail_locators: Sequence[str] = (),
        fatal_on: Optional[str] = None,
        back_fails: bool = False,
        on_apply: Optional[Callable[[str], None]] = None,
        on_extract: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.site = site
        self.fail_locators = set(fail_locators)
        self.fatal_on = fatal_on
        self.back_fails = back_fails
        self.on_apply = on_apply
        self.on_extract = on_extract
        self.current: Optional[str] = None
        self.history: List[str] = []
        self.applied: List[str] = []
        self.navigations: List[str] = []
        self.backs = 0
        self.closed = False

    async def __aenter__(self) -> "FakeDriver":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _alive(self) -> None:
        if self.closed:
            raise FatalDriverError("browser has been closed")

    def _go(self, target: str) -> None:
        if target not in self.site:
            raise TransientDriverError(f"404 for {target}")
        if self.current is not None:
            self.history.append(self.current)
        self.current = target

    async def navigate(self, target: str) -> str:
        self._alive()
        self.navigations.append(target)
        self._go(target)
        return target

    async def observe(self) -> Observation:
        self._alive()
        return Observation(url=self.current or "about:blank", title=self.site[self.current].title)

    async def list_candidate_elements(self, observation: Observation) -> List[Element]:
        self._alive()
        if self.on_extract is not None:
            self.on_extract(observation.url)
        return list(self.site[observation.url].elements)

    def _known_locators(self) -> set:
        page = self.site[self.current]
        known = set(page.targets)
        for el in page.elements:
            known.add(el.locator)
            if el.submit_locator:
                known.add(el.submit_locator)
            known.update(f.locator for f in el.fields)
        return known

    async def apply(self, element: Optional[Element], action: Action) -> str:
        self._alive()
        if isinstance(action, Navigate):
            return await self.navigate(action.url)
        if isinstance(action, Backtrack):
            for _ in range(action.steps):
                await self.back()
            return self.current
        if isinstance(action, End):
            return self.current

        if element is not None:
            locator = element.locator
        elif isinstance(action, Click):
            locator = action.locator
        elif isinstance(action, FormFill):
            locator = action.submit or action.fields[0][0]
        else:
            raise TypeError(action)

        self.applied.append(locator)
        if self.on_apply is not None:
            self.on_apply(locator)
        if locator == self.fatal_on:
            self.closed = True
            raise FatalDriverError("target closed")
        if locator in self.fail_locators or locator not in self._known_locators():
            raise TransientDriverError(f"element {locator} not found")
        target = self.site[self.current].targets.get(locator)
        if target is not None:
            self._go(target)
        return self.current

    async def back(self) -> None:
        self._alive()
        self.backs += 1
        if self.back_fails or not self.history:
            raise TransientDriverError("cannot go back")
        self.current = self.history.pop()

    async def close(self) -> None:
        self.closed = True


Scripted = Union[Any, Exception]


class ScriptedOracle:
    """Answers from queues; an Exception in a queue is raised instead of returned."""

    def __init__(
        self,
        verdicts: Sequence[Scripted] = (),
        proposals: Sequence[Scripted] = (),
        suites: Sequence[Scripted] = (),
    ) -> None:
        self.verdicts = list(verdicts)
        self.proposals = list(proposals)
        self.suites = list(suites)
        self.classified: List[str] = []
        self.currents: List[Optional[str]] = []
        self.histories: List[List[Action]] = []

    @staticmethod
    def _next(queue: List[Scripted], default: Any) -> Any:
        item = queue.pop(0) if queue else default
        if isinstance(item, Exception):
            raise item
        return item

    async def classify_workflow(self, state: State, current: Optional[Workflow]) -> WorkflowClassification:
        self.classified.append(state.fingerprint)
        self.currents.append(current.workflow_id if current else None)
        verdict = self._next(self.verdicts, False)
        if isinstance(verdict, bool):
            return WorkflowClassification(continues_current=verdict, reason="scripted")
        return verdict

    async def propose_next_action(self, state: State, history: Sequence[Action]) -> Action:
        self.histories.append(list(history))
        return self._next(self.proposals, End(reasoning="script exhausted"))

    async def synthesize_test_cases(self, elements: Sequence[Element], context: str) -> List[SynthesizedTestCase]:
        return self._next(self.suites, [])


@pytest.fixture
def tree_site() -> Dict[str, Page]:
    return site_of({
        ROOT: {"#a": url("/a"), "#b": url("/b")},
        url("/a"): {"#c": url("/c")},
        url("/b"): {},
        url("/c"): {},
    })


@pytest.fixture
def failing_oracle() -> ScriptedOracle:
    return ScriptedOracle(verdicts=[OracleError("down")] * 10, proposals=[OracleError("down")] * 10,
                          suites=[OracleError("down")] * 10)
