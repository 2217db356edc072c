"""Language-model oracle: workflow classification, next-action proposal, test synthesis.

The oracle is best-effort and non-deterministic. Every answer is parsed as JSON and
validated against a pydantic schema before use; malformed output is an
`OracleResponseError` and is retried like a network failure. After the last
attempt the caller receives an `OracleError` and applies its documented default.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Awaitable, Callable, List, Literal, Optional, Protocol, Sequence, TypeVar
from urllib.parse import urlsplit

import openai
from openai import AsyncOpenAI
from pydantic import AliasChoices, BaseModel, Field, ValidationError, model_validator

from .config import Settings
from .errors import OracleError, OracleResponseError
from .input_generator import InputValueGenerator
from .knowledge import Action, Click, Element, End, FormFill, State, Workflow, action_from_dict

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ----------------------------------------------------------------------
# response schemas ------------------------------------------------------

class WorkflowClassification(BaseModel):
    continues_current: bool = Field(
        validation_alias=AliasChoices("continues_current", "continuesCurrent", "isSameWorkflow")
    )
    reason: str = ""


class FormDatum(BaseModel):
    selector: str
    value: str = ""


class ProposedAction(BaseModel):
    type: Literal["click", "form_fill", "navigate", "backtrack", "end"]
    target_selector: Optional[str] = None
    formData: List[FormDatum] = Field(default_factory=list)
    submit_selector: Optional[str] = None
    url: Optional[str] = None
    steps_back: int = 1
    reasoning: str = ""

    @model_validator(mode="after")
    def _check_payload(self) -> "ProposedAction":
        if self.type == "click" and not self.target_selector:
            raise ValueError("click requires target_selector")
        if self.type == "form_fill" and not self.formData:
            raise ValueError("form_fill requires formData")
        if self.type == "navigate" and not self.url:
            raise ValueError("navigate requires url")
        if self.type == "backtrack" and self.steps_back < 1:
            raise ValueError("backtrack requires steps_back >= 1")
        return self

    def to_action(self) -> Action:
        return action_from_dict(self.model_dump())


class SynthesizedStep(BaseModel):
    action: str
    selector: Optional[str] = None
    value: Optional[str] = None
    assertion: str = ""


class SynthesizedTestCase(BaseModel):
    name: str
    description: str = ""
    steps: List[SynthesizedStep] = Field(min_length=1)
    tags: List[str] = Field(default_factory=list)
    priority: Literal["high", "medium", "low"] = "low"


class SynthesizedSuite(BaseModel):
    test_cases: List[SynthesizedTestCase] = Field(default_factory=list)


# ----------------------------------------------------------------------
# interface -------------------------------------------------------------

class Oracle(Protocol):
    async def classify_workflow(self, state: State, current: Optional[Workflow]) -> WorkflowClassification:
        ...

    async def propose_next_action(self, state: State, history: Sequence[Action]) -> Action:
        ...

    async def synthesize_test_cases(self, elements: Sequence[Element], context: str) -> List[SynthesizedTestCase]:
        ...


async def call_with_retries(
    call: Callable[[], Awaitable[T]],
    attempts: int = 3,
    backoff: float = 1.0,
    what: str = "oracle call",
) -> T:
    """Run `call` up to `attempts` times, sleeping ``backoff * attempt`` seconds between tries."""
    last_exc: Optional[BaseException] = None
    for attempt in range(1, attempts + 1):
        try:
            return await call()
        except (OracleError, openai.OpenAIError, ValidationError, json.JSONDecodeError) as exc:
            last_exc = exc
            logger.warning("%s failed (attempt %d/%d): %s", what, attempt, attempts, exc)
            if attempt < attempts:
                await asyncio.sleep(backoff * attempt)
    raise OracleError(f"{what} failed after {attempts} attempts") from last_exc


def parse_json_payload(content: str) -> Any:
    """Strip code fences the model sometimes adds, then decode."""
    cleaned = re.sub(r"```[a-zA-Z]*", "", content or "").strip("` \n")
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise OracleResponseError(f"oracle returned non-JSON content: {content[:200]!r}") from exc


def describe_state(state: State, limit: int = 60) -> str:
    """Compact text rendering of a State for prompts."""
    lines = [f"URL: {state.url}", f"Title: {state.title}"]
    for el in state.elements[:limit]:
        line = f"- {el.kind.value} [{el.locator}] {el.text!r}"
        if el.href:
            line += f" -> {el.href}"
        if el.fields:
            line += " fields: " + ", ".join(f"{f.locator}({f.input_type})" for f in el.fields)
        lines.append(line)
    if len(state.elements) > limit:
        lines.append(f"... {len(state.elements) - limit} more elements")
    return "\n".join(lines)


# ----------------------------------------------------------------------
# OpenAI backed oracle --------------------------------------------------

_CLASSIFY_PROMPT = """As a web user experience expert, analyze if this page is part of the same user interaction workflow.

Website context: {context}

Current workflow so far (page fingerprints, oldest first):
{members}

New page:
{state}

Context: A user workflow is a series of related interactions to accomplish a specific task (like "contact us" or "checkout").
Common workflows include:
1. Contact/Support flow (contact form -> confirmation)
2. Authentication (login/signup -> dashboard)
3. E-commerce (product -> cart -> checkout)
4. Account management (settings -> update -> confirmation)

Question: is this page a continuation of the current workflow or the start of a new one?

Respond in JSON format:
{{"continues_current": boolean, "reason": "brief explanation"}}"""

_NEXT_ACTION_PROMPT = """You are an intelligent web crawler focused on testing USER WORKFLOWS.
Prefer functional interactions (authentication, create/edit/delete, form submissions) over informational pages.

Website context: {context}
{credentials}

Current page:
{state}

Actions taken so far:
{history}

Choose exactly one next action and return JSON with one of these shapes:
{{"type": "click", "target_selector": "<selector>", "reasoning": "..."}}
{{"type": "form_fill", "formData": [{{"selector": "<selector>", "value": "<value>"}}], "submit_selector": "<selector>", "reasoning": "..."}}
{{"type": "navigate", "url": "<absolute url>", "reasoning": "..."}}
{{"type": "backtrack", "steps_back": <int>, "reasoning": "..."}}
{{"type": "end", "reasoning": "..."}}
Only use selectors that appear on the current page."""

_SYNTHESIZE_PROMPT = """You are a QA engineer writing regression test cases for a web page.

Context: {context}

Interactive elements:
{elements}

Write test cases that exercise these elements. Return JSON:
{{"test_cases": [{{"name": str, "description": str,
  "steps": [{{"action": "navigate|click|fill|select|submit", "selector": str, "value": str, "assertion": str}}],
  "tags": [str], "priority": "high|medium|low"}}]}}"""


class OpenAIOracle:
    """Oracle backed by the OpenAI chat completions API (JSON response mode)."""

    def __init__(self, settings: Settings, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._client = client or AsyncOpenAI(
            api_key=settings.openai_api_key or None,
            timeout=settings.oracle_timeout,
            max_retries=0,
        )
        self.token_usage: int = 0

    async def _complete_json(self, system: str, prompt: str) -> Any:
        resp = await self._client.chat.completions.create(
            model=self._settings.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            response_format={"type": "json_object"},
            temperature=0,
        )
        self.token_usage += resp.usage.total_tokens if resp and resp.usage else 0
        if not resp.choices:
            raise OracleResponseError("oracle returned no choices")
        content = resp.choices[0].message.content or ""
        logger.debug("Oracle response: %s", content[:500])
        return parse_json_payload(content)

    async def _retrying(self, call: Callable[[], Awaitable[T]], what: str) -> T:
        return await call_with_retries(
            call,
            attempts=self._settings.oracle_retries,
            backoff=self._settings.oracle_backoff,
            what=what,
        )

    async def classify_workflow(self, state: State, current: Optional[Workflow]) -> WorkflowClassification:
        members = "\n".join(f"- {fp}" for fp in current.members) if current else "(no workflow yet)"
        prompt = _CLASSIFY_PROMPT.format(
            context=self._settings.website_context or "(none)",
            members=members,
            state=describe_state(state),
        )

        async def call() -> WorkflowClassification:
            data = await self._complete_json("You are a web UX expert who analyzes user workflows.", prompt)
            return WorkflowClassification.model_validate(data)

        return await self._retrying(call, "classify_workflow")

    async def propose_next_action(self, state: State, history: Sequence[Action]) -> Action:
        creds = self._settings.credentials
        credentials = (
            f"Use these credentials when authentication is needed: username={creds.username} password={creds.password}"
            if creds
            else "No test credentials provided. Skip workflows requiring authentication."
        )
        prompt = _NEXT_ACTION_PROMPT.format(
            context=self._settings.website_context or "(none)",
            credentials=credentials,
            state=describe_state(state),
            history=json.dumps([a.to_dict() for a in history], indent=1) if history else "No actions taken yet",
        )

        async def call() -> Action:
            data = await self._complete_json("You are a web crawler deciding how to explore a website.", prompt)
            return ProposedAction.model_validate(data).to_action()

        return await self._retrying(call, "propose_next_action")

    async def synthesize_test_cases(self, elements: Sequence[Element], context: str) -> List[SynthesizedTestCase]:
        rendered = "\n".join(json.dumps(el.to_dict()) for el in elements)
        prompt = _SYNTHESIZE_PROMPT.format(context=context or self._settings.website_context or "(none)", elements=rendered)

        async def call() -> List[SynthesizedTestCase]:
            data = await self._complete_json("You write precise, assertable UI test cases.", prompt)
            if isinstance(data, list):
                data = {"test_cases": data}
            return SynthesizedSuite.model_validate(data).test_cases

        return await self._retrying(call, "synthesize_test_cases")


# ----------------------------------------------------------------------
# offline fallback ------------------------------------------------------

def _section(url: str) -> str:
    segments = [s for s in urlsplit(url).path.split("/") if s]
    return segments[0].lower() if segments else ""


class HeuristicOracle:
    """Deterministic stand-in used when no API key is configured.

    A page continues the current workflow when its first path segment matches the
    most recently classified member; proposals walk the page's elements in order.
    """

    def __init__(self, inputs: InputValueGenerator | None = None) -> None:
        self._inputs = inputs or InputValueGenerator()

    async def classify_workflow(self, state: State, current: Optional[Workflow]) -> WorkflowClassification:
        if current is None or not current.members:
            return WorkflowClassification(continues_current=False, reason="no current workflow")
        last = current.members[-1]
        if _section(state.url) == _section(last):
            return WorkflowClassification(continues_current=True, reason=f"same section as {last}")
        return WorkflowClassification(continues_current=False, reason="different site section")

    async def propose_next_action(self, state: State, history: Sequence[Action]) -> Action:
        done = {a.key for a in history}
        for el in state.elements:
            action = self._inputs.action_for(el)
            if action is not None and action.key not in done:
                return action
        return End(reasoning="every element on the page has been tried")

    async def synthesize_test_cases(self, elements: Sequence[Element], context: str) -> List[SynthesizedTestCase]:
        cases: List[SynthesizedTestCase] = []
        for el in elements:
            action = self._inputs.action_for(el)
            if isinstance(action, FormFill):
                steps = [
                    SynthesizedStep(action="fill", selector=loc, value=val, assertion="Input should accept a value")
                    for loc, val in action.fields
                ]
                if action.submit:
                    steps.append(SynthesizedStep(action="submit", selector=action.submit,
                                                 assertion="Form should submit successfully"))
                name = f"Fill {el.text or el.locator}"
            elif isinstance(action, Click):
                steps = [SynthesizedStep(action="click", selector=action.locator,
                                         assertion="Element should be clickable")]
                name = f"Click {el.text or el.locator}"
            else:
                continue
            cases.append(SynthesizedTestCase(name=name, description=context, steps=steps,
                                             tags=[el.kind.value], priority="low"))
        return cases


def build_oracle(settings: Settings, offline: bool = False) -> Oracle:
    if offline or not settings.has_openai:
        logger.info("Using heuristic oracle (offline=%s, api key set=%s)", offline, settings.has_openai)
        return HeuristicOracle(InputValueGenerator(settings.credentials))
    return OpenAIOracle(settings)
