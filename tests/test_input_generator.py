import pytest

from flow_explorer.config import Credentials
from flow_explorer.input_generator import InputValueGenerator
from flow_explorer.knowledge import Click, Element, ElementKind, FormField, FormFill


class TestValueFor:
    @pytest.mark.parametrize("field, expected", [
        (FormField("#email", input_type="email"), "test@example.com"),
        (FormField("#pw", input_type="password"), "Passw0rd!"),
        (FormField("#phone", name="phone"), "123-456-7890"),
        (FormField("#qty", input_type="number"), "1"),
        (FormField("#when", input_type="date"), "2024-01-01"),
        (FormField("#agree", input_type="checkbox"), "on"),
        (FormField("#q", placeholder="Search products"), "test"),
        (FormField("#full", label="Full name"), "Jane Doe"),
        (FormField("#misc"), "sample text"),
        (FormField("#size", options=("M", "L")), "M"),
    ])
    def test_value_from_field_hints(self, field, expected):
        assert InputValueGenerator().value_for(field) == expected

    def test_credentials_are_used_for_login_fields(self):
        gen = InputValueGenerator(Credentials("alice", "s3cret"))
        assert gen.value_for(FormField("#user", name="username")) == "alice"
        assert gen.value_for(FormField("#pw", input_type="password")) == "s3cret"


class TestActionFor:
    def test_links_and_buttons_become_clicks(self):
        gen = InputValueGenerator()
        assert gen.action_for(Element(ElementKind.LINK, "#a", "About")) == Click("#a")
        assert gen.action_for(Element(ElementKind.BUTTON, "#b")) == Click("#b")

    def test_form_becomes_form_fill(self):
        el = Element(ElementKind.FORM, "#f", fields=(FormField("#email", input_type="email"),), submit_locator="#go")
        assert InputValueGenerator().action_for(el) == FormFill(fields=(("#email", "test@example.com"),), submit="#go")

    def test_empty_form_has_no_action(self):
        assert InputValueGenerator().action_for(Element(ElementKind.FORM, "#f")) is None

    def test_standalone_select_fills_without_submit(self):
        el = Element(ElementKind.SELECT, "#sort", fields=(FormField("#sort", options=("price", "name")),))
        assert InputValueGenerator().action_for(el) == FormFill(fields=(("#sort", "price"),), submit=None)
