# tests/test_providers.py
"""Tests for prompt resolvers."""

import pytest


class TestSimplePromptProvider:
    def test_substitutes_keys_and_appends_document(self):
        from unstruct.providers import SimplePromptProvider

        p = SimplePromptProvider({"basic": "Extract {keys} as JSON."})
        out = p.get_prompt("basic", 1, ["name", "age"], "John, 25")
        assert out == "Extract name,age as JSON.\n\n<<DOC>>\nJohn, 25\n<<END>>"

    def test_without_document(self):
        from unstruct.providers import SimplePromptProvider

        p = SimplePromptProvider({"basic": "Extract {keys}."})
        assert p.get_prompt("basic", keys=["a"]) == "Extract a."

    def test_missing_label(self):
        from unstruct.providers import PromptNotFoundError, SimplePromptProvider

        with pytest.raises(PromptNotFoundError):
            SimplePromptProvider().get_prompt("nope")

    def test_satisfies_protocol(self):
        from unstruct.providers import PromptProvider, SimplePromptProvider, TemplatePromptProvider

        assert isinstance(SimplePromptProvider(), PromptProvider)
        assert isinstance(TemplatePromptProvider(), PromptProvider)


class TestTemplatePromptProvider:
    def test_renders_context(self):
        from unstruct.providers import TemplatePromptProvider

        p = TemplatePromptProvider(
            {"basic": "[{{ tag }} v{{ version }}] Extract {{ key_list }} in {{ language }}.\n{{ document }}"},
            variables={"language": "en"},
        )
        out = p.get_prompt("basic", 2, ["name", "age"], "John, 25")
        assert out == "[basic v2] Extract name, age in en.\nJohn, 25"

    def test_loop_over_keys(self):
        from unstruct.providers import TemplatePromptProvider

        p = TemplatePromptProvider({"list": "{% for k in keys %}- {{ k }}\n{% endfor %}"})
        assert p.get_prompt("list", keys=["a", "b"]) == "- a\n- b\n"

    def test_undefined_variable_fails(self):
        from unstruct.providers import TemplatePromptProvider, TemplateRenderError

        p = TemplatePromptProvider({"bad": "{{ missing }}"})
        with pytest.raises(TemplateRenderError):
            p.get_prompt("bad")

    def test_syntax_error_on_add(self):
        from unstruct.providers import TemplatePromptProvider, TemplateRenderError

        with pytest.raises(TemplateRenderError):
            TemplatePromptProvider({"broken": "{% for %}"})

    def test_sandbox_blocks_unsafe_access(self):
        from unstruct.providers import TemplatePromptProvider, TemplateRenderError

        p = TemplatePromptProvider({"evil": "{{ keys.__class__ }}"})
        with pytest.raises(TemplateRenderError):
            p.get_prompt("evil", keys=["a"])

    def test_from_directory(self, tmp_path):
        from unstruct.providers import TemplatePromptProvider

        (tmp_path / "basic.j2").write_text("Extract {{ key_list }}.", encoding="utf-8")
        (tmp_path / "legacy.twig").write_text("Legacy {{ key_list }}.", encoding="utf-8")
        (tmp_path / "notes.txt").write_text("ignored", encoding="utf-8")

        p = TemplatePromptProvider.from_directory(tmp_path)
        assert p.labels == ["basic", "legacy"]
        assert p.get_prompt("legacy", keys=["x"]) == "Legacy x."

    def test_set_variable(self):
        from unstruct.providers import TemplatePromptProvider

        p = TemplatePromptProvider({"t": "{{ tone }}"})
        p.set_variable("tone", "formal")
        assert p.get_prompt("t") == "formal"
