"""Data structures that form the *knowledge* backbone of Flow-Explorer.

States, interactive elements, actions and the directed exploration graph that
ties them together. The graph is the only owner of States and Transitions for
the lifetime of one exploration run; everything else refers to states by
fingerprint.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, ClassVar, Dict, Iterator, List, Optional, Tuple

import networkx as nx


class ElementKind(str, Enum):
    """Interactive affordances the driver reports."""

    LINK = "link"
    BUTTON = "button"
    FORM = "form"
    INPUT = "input"
    SELECT = "select"


@dataclass(frozen=True)
class FormField:
    """A fillable control, either inside a form or standing alone on the page."""

    locator: str
    name: str = ""
    input_type: str = "text"
    placeholder: str = ""
    label: str = ""
    required: bool = False
    options: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "locator": self.locator,
            "name": self.name,
            "input_type": self.input_type,
            "placeholder": self.placeholder,
            "label": self.label,
            "required": self.required,
            "options": list(self.options),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FormField":
        return cls(
            locator=data["locator"],
            name=data.get("name", ""),
            input_type=data.get("input_type", "text"),
            placeholder=data.get("placeholder", ""),
            label=data.get("label", ""),
            required=bool(data.get("required", False)),
            options=tuple(data.get("options", ())),
        )


@dataclass(frozen=True)
class Element:
    """An interactive element owned by exactly one State.

    `locator` must be enough for the driver to find the element again on a later
    visit (id, data-testid, text or structural CSS selector).
    """

    kind: ElementKind
    locator: str
    text: str = ""
    href: Optional[str] = None
    fields: Tuple[FormField, ...] = ()  # forms: their inputs; input/select: the control itself
    submit_locator: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.kind.value}:{self.locator}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "locator": self.locator,
            "text": self.text,
            "href": self.href,
            "fields": [f.to_dict() for f in self.fields],
            "submit_locator": self.submit_locator,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Element":
        return cls(
            kind=ElementKind(data["kind"]),
            locator=data["locator"],
            text=data.get("text", ""),
            href=data.get("href"),
            fields=tuple(FormField.from_dict(f) for f in data.get("fields", [])),
            submit_locator=data.get("submit_locator"),
        )


@dataclass(frozen=True)
class State:
    """A discovered page. Created on first visit, never mutated afterwards."""

    fingerprint: str
    url: str
    title: str = ""
    elements: Tuple[Element, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fingerprint": self.fingerprint,
            "url": self.url,
            "title": self.title,
            "elements": [e.to_dict() for e in self.elements],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "State":
        return cls(
            fingerprint=data["fingerprint"],
            url=data["url"],
            title=data.get("title", ""),
            elements=tuple(Element.from_dict(e) for e in data.get("elements", [])),
        )


# ----------------------------------------------------------------------
# actions ---------------------------------------------------------------

@dataclass(frozen=True)
class Action:
    """Base of the closed action family: Click | FormFill | Navigate | Backtrack | End."""

    kind: ClassVar[str] = ""

    def _payload(self) -> List[Any]:
        return []

    @property
    def key(self) -> str:
        """Canonical identity of the action; free-text reasoning is not part of it."""
        return json.dumps([self.kind, *self._payload()], separators=(",", ":"))

    def to_dict(self) -> Dict[str, Any]:
        raise NotImplementedError


@dataclass(frozen=True)
class Click(Action):
    kind: ClassVar[str] = "click"

    locator: str = ""
    reasoning: str = field(default="", compare=False)

    def _payload(self) -> List[Any]:
        return [self.locator]

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind, "target_selector": self.locator, "reasoning": self.reasoning}


@dataclass(frozen=True)
class FormFill(Action):
    kind: ClassVar[str] = "form_fill"

    fields: Tuple[Tuple[str, str], ...] = ()  # (locator, value) pairs in fill order
    submit: Optional[str] = None
    reasoning: str = field(default="", compare=False)

    def _payload(self) -> List[Any]:
        return [[list(f) for f in self.fields], self.submit]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "formData": [{"selector": loc, "value": val} for loc, val in self.fields],
            "submit_selector": self.submit,
            "reasoning": self.reasoning,
        }


@dataclass(frozen=True)
class Navigate(Action):
    kind: ClassVar[str] = "navigate"

    url: str = ""
    reasoning: str = field(default="", compare=False)

    def _payload(self) -> List[Any]:
        return [self.url]

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind, "url": self.url, "reasoning": self.reasoning}


@dataclass(frozen=True)
class Backtrack(Action):
    kind: ClassVar[str] = "backtrack"

    steps: int = 1
    reasoning: str = field(default="", compare=False)

    def _payload(self) -> List[Any]:
        return [self.steps]

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind, "steps_back": self.steps, "reasoning": self.reasoning}


@dataclass(frozen=True)
class End(Action):
    kind: ClassVar[str] = "end"

    reasoning: str = field(default="", compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind, "reasoning": self.reasoning}


def action_from_dict(data: Dict[str, Any]) -> Action:
    """Inverse of `Action.to_dict`. Raises ValueError for an unknown ``type``."""
    kind = data.get("type")
    reasoning = data.get("reasoning", "") or ""
    if kind == Click.kind:
        return Click(locator=data["target_selector"], reasoning=reasoning)
    if kind == FormFill.kind:
        fields = tuple((f["selector"], str(f.get("value", ""))) for f in data.get("formData", []))
        return FormFill(fields=fields, submit=data.get("submit_selector"), reasoning=reasoning)
    if kind == Navigate.kind:
        return Navigate(url=data["url"], reasoning=reasoning)
    if kind == Backtrack.kind:
        return Backtrack(steps=int(data.get("steps_back", 1)), reasoning=reasoning)
    if kind == End.kind:
        return End(reasoning=reasoning)
    raise ValueError(f"unknown action type: {kind!r}")


@dataclass(frozen=True)
class Transition:
    source: str  # fingerprints
    target: str
    action: Action


@dataclass
class Workflow:
    """A named cluster of states believed to form one user journey.

    Members are fingerprints into the exploration graph, never State copies.
    """

    workflow_id: str
    members: List[str] = field(default_factory=list)
    reasons: List[str] = field(default_factory=list)

    def add(self, fp: str, reason: str = "") -> None:
        if fp not in self.members:
            self.members.append(fp)
        if reason:
            self.reasons.append(reason)

    def __contains__(self, fp: object) -> bool:
        return fp in self.members

    @property
    def member_set(self) -> frozenset:
        return frozenset(self.members)

    def to_dict(self) -> Dict[str, Any]:
        return {"workflow_id": self.workflow_id, "members": list(self.members), "reasons": list(self.reasons)}


# ----------------------------------------------------------------------
# graph -----------------------------------------------------------------

class ExplorationGraph:
    """Directed multigraph of States; one edge per distinct (source, target, action).

    Node keys are fingerprints, edge keys are `Action.key`, so inserting the same
    transition twice is a no-op and repeated crawls of one link cannot grow the
    edge set.
    """

    def __init__(self) -> None:
        self._g: nx.MultiDiGraph = nx.MultiDiGraph()
        self._lock = threading.RLock()

    # --- state helpers ----------------------------------------------------
    def get_or_create(self, fp: str, factory: Callable[[], State]) -> State:
        """Return the State for `fp`, building it with `factory` exactly once."""
        with self._lock:
            if fp in self._g:
                return self._g.nodes[fp]["obj"]
            state = factory()
            if state.fingerprint != fp:
                raise ValueError(f"factory built state {state.fingerprint!r} for fingerprint {fp!r}")
            self._g.add_node(fp, obj=state)
            return state

    def has_state(self, fp: str) -> bool:
        return fp in self._g

    def get_state(self, fp: str) -> Optional[State]:
        if fp in self._g:
            return self._g.nodes[fp]["obj"]
        return None

    def all_states(self) -> List[State]:
        """Every State in discovery order."""
        return [data["obj"] for _, data in self._g.nodes(data=True)]

    @property
    def state_count(self) -> int:
        return self._g.number_of_nodes()

    # --- edge helpers -----------------------------------------------------
    def add_transition(self, source: State, target: State, action: Action) -> bool:
        """Insert the edge unless an identical one exists; True when inserted."""
        with self._lock:
            for st in (source, target):
                if st.fingerprint not in self._g:
                    raise KeyError(f"unknown state {st.fingerprint!r}")
            if self._g.has_edge(source.fingerprint, target.fingerprint, key=action.key):
                return False
            self._g.add_edge(source.fingerprint, target.fingerprint, key=action.key, obj=action)
            return True

    def children_of(self, source: State | str) -> List[State]:
        """Distinct targets of `source`, in the order their first edge was inserted."""
        fp = source if isinstance(source, str) else source.fingerprint
        if fp not in self._g:
            return []
        return [self._g.nodes[child]["obj"] for child in self._g.successors(fp)]

    def transitions_between(self, source: str, target: str) -> List[Action]:
        edge_data = self._g.get_edge_data(source, target)
        if not edge_data:
            return []
        return [data["obj"] for data in edge_data.values()]

    def transitions(self) -> Iterator[Transition]:
        for u, v, data in self._g.edges(data=True):
            yield Transition(u, v, data["obj"])

    @property
    def transition_count(self) -> int:
        return self._g.number_of_edges()

    # convenience ----------------------------------------------------------
    def snapshot(self) -> "ExplorationGraph":
        """Independent copy for consumers that must not see further mutation."""
        with self._lock:
            copy = ExplorationGraph()
            copy._g = self._g.copy()
            return copy

    def to_networkx(self) -> nx.MultiDiGraph:
        """Sanitized graph (plain attributes only) suitable for GraphML export."""
        g = nx.MultiDiGraph()
        for fp, data in self._g.nodes(data=True):
            st: State = data["obj"]
            g.add_node(fp, url=st.url, title=st.title, elements=len(st.elements))
        for u, v, k, data in self._g.edges(keys=True, data=True):
            g.add_edge(u, v, key=k, kind=data["obj"].kind)
        return g

    # ------------------------------------------------------------------
    # persistence -------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "states": [st.to_dict() for st in self.all_states()],
            "transitions": [
                {"source": t.source, "target": t.target, "action": t.action.to_dict()}
                for t in self.transitions()
            ],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExplorationGraph":
        G = cls()
        for meta in data["states"]:
            st = State.from_dict(meta)
            G.get_or_create(st.fingerprint, lambda st=st: st)
        for meta in data["transitions"]:
            G.add_transition(
                G.get_state(meta["source"]),
                G.get_state(meta["target"]),
                action_from_dict(meta["action"]),
            )
        return G
