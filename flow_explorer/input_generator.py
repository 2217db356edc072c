"""Content-aware values for form fields, and the element -> action mapping."""

from __future__ import annotations

from typing import Optional

from .config import Credentials
from .knowledge import Action, Click, Element, ElementKind, FormField, FormFill


class InputValueGenerator:
    """Picks plausible text for inputs from their type, name, placeholder and label.

    Configured test credentials win for username/email/password fields so that
    authentication workflows can actually be completed.
    """

    def __init__(self, credentials: Credentials | None = None) -> None:
        self._credentials = credentials

    def value_for(self, f: FormField) -> str:
        hint = " ".join((f.name, f.placeholder, f.label, f.locator)).lower()
        kind = (f.input_type or "text").lower()

        if f.options:
            return f.options[0]
        if kind == "password" or "password" in hint:
            return self._credentials.password if self._credentials else "Passw0rd!"
        if self._credentials and any(w in hint for w in ("user", "login")):
            return self._credentials.username
        if kind == "email" or "email" in hint:
            return self._credentials.username if self._credentials and "@" in self._credentials.username else "test@example.com"
        if kind == "tel" or "phone" in hint:
            return "123-456-7890"
        if kind == "number":
            return "1"
        if kind == "url":
            return "https://example.com"
        if kind == "date":
            return "2024-01-01"
        if kind in ("checkbox", "radio"):
            return "on"
        if "search" in hint or kind == "search":
            return "test"
        if "name" in hint:
            return "Jane Doe"
        return "sample text"

    def action_for(self, element: Element) -> Optional[Action]:
        """Concrete action that exercises `element`, or None when it has nothing to do."""
        if element.kind in (ElementKind.LINK, ElementKind.BUTTON):
            return Click(locator=element.locator, reasoning=element.text)
        if element.kind == ElementKind.FORM:
            if not element.fields and not element.submit_locator:
                return None
            fields = tuple((f.locator, self.value_for(f)) for f in element.fields)
            return FormFill(fields=fields, submit=element.submit_locator, reasoning=element.text)
        if element.kind in (ElementKind.INPUT, ElementKind.SELECT):
            f = element.fields[0] if element.fields else FormField(locator=element.locator)
            return FormFill(fields=((f.locator, self.value_for(f)),), submit=None, reasoning=element.text)
        raise TypeError(f"unhandled element kind: {element.kind!r}")
