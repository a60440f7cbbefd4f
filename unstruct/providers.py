"""Prompt resolvers: turn a prompt label plus batch context into rendered prompt text.

Two reference implementations ship with the package:

- :class:`SimplePromptProvider` - a plain mapping of label -> template text.
  ``{keys}`` is replaced with the comma-separated field paths and the
  document is appended between ``<<DOC>>`` / ``<<END>>`` markers.
- :class:`TemplatePromptProvider` - Jinja2 templates rendered in a sandbox
  with ``keys``, ``key_list``, ``document``, ``tag`` and ``version`` plus any
  custom variables.  Templates can be registered inline or loaded from a
  directory of ``*.j2`` / ``*.jinja`` / ``*.twig`` files.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Protocol, Sequence, runtime_checkable

from jinja2 import StrictUndefined, TemplateError, TemplateSyntaxError
from jinja2.sandbox import SandboxedEnvironment

KEYS_PLACEHOLDER = "{keys}"
TEMPLATE_SUFFIXES = (".j2", ".jinja", ".jinja2", ".twig")


class PromptNotFoundError(LookupError):
    """No template is registered under the requested label."""


class TemplateRenderError(Exception):
    """A template failed to compile or render."""


@runtime_checkable
class PromptProvider(Protocol):
    """Prompt resolver used by the engine and the dry-run planner."""

    def get_prompt(
        self,
        label: str,
        version: int = 1,
        keys: Optional[Sequence[str]] = None,
        document: Optional[str] = None,
    ) -> str:
        ...


def build_prompt(template: str, keys: Sequence[str], document: Optional[str]) -> str:
    """Substitute ``{keys}`` and append the document block."""
    prompt = template.replace(KEYS_PLACEHOLDER, ",".join(keys))
    if document:
        prompt = f"{prompt}\n\n<<DOC>>\n{document}\n<<END>>"
    return prompt


class SimplePromptProvider:
    """Mapping-backed prompt resolver."""

    def __init__(self, templates: Optional[Mapping[str, str]] = None) -> None:
        self._templates: Dict[str, str] = dict(templates or {})

    def add(self, label: str, template: str) -> None:
        self._templates[label] = template

    def __contains__(self, label: object) -> bool:
        return label in self._templates

    def get_prompt(
        self,
        label: str,
        version: int = 1,
        keys: Optional[Sequence[str]] = None,
        document: Optional[str] = None,
    ) -> str:
        try:
            template = self._templates[label]
        except KeyError:
            raise PromptNotFoundError(f"prompt {label!r} not found") from None
        return build_prompt(template, keys or (), document)


class TemplatePromptProvider:
    """Sandboxed Jinja2 prompt resolver.

    Example::

        provider = TemplatePromptProvider(
            {"basic": "Extract {{ key_list }} as JSON.\\n\\n{{ document }}"},
            variables={"language": "en"},
        )
        provider.get_prompt("basic", keys=["name", "age"], document="John, 25")
    """

    def __init__(
        self,
        templates: Optional[Mapping[str, str]] = None,
        *,
        variables: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self._env = SandboxedEnvironment(
            undefined=StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
        )
        self._sources: Dict[str, str] = {}
        self._variables: Dict[str, Any] = dict(variables or {})
        for label, source in (templates or {}).items():
            self.add(label, source)

    @classmethod
    def from_directory(
        cls,
        directory: str | Path,
        *,
        variables: Optional[Mapping[str, Any]] = None,
    ) -> "TemplatePromptProvider":
        """Load every template file under *directory*; the label is the file stem."""
        provider = cls(variables=variables)
        for path in sorted(Path(directory).rglob("*")):
            if path.is_file() and path.suffix.lower() in TEMPLATE_SUFFIXES:
                provider.add(path.stem, path.read_text(encoding="utf-8"))
        return provider

    def add(self, label: str, source: str) -> None:
        """Register or replace one template, validating its syntax."""
        try:
            self._env.parse(source)
        except TemplateSyntaxError as e:
            raise TemplateRenderError(f"invalid template {label!r}: {e}") from e
        self._sources[label] = source

    def set_variable(self, key: str, value: Any) -> None:
        self._variables[key] = value

    @property
    def labels(self) -> list[str]:
        return sorted(self._sources)

    def get_prompt(
        self,
        label: str,
        version: int = 1,
        keys: Optional[Sequence[str]] = None,
        document: Optional[str] = None,
    ) -> str:
        try:
            source = self._sources[label]
        except KeyError:
            raise PromptNotFoundError(f"template {label!r} not found") from None

        key_list = list(keys or ())
        context: Dict[str, Any] = {
            "tag": label,
            "version": version,
            "keys": key_list,
            "key_list": ", ".join(key_list),
            "document": document or "",
        }
        context.update(self._variables)
        try:
            return self._env.from_string(source).render(context)
        except TemplateError as e:
            raise TemplateRenderError(f"render {label!r}: {e}") from e


__all__ = [
    "KEYS_PLACEHOLDER",
    "PromptProvider",
    "PromptNotFoundError",
    "TemplateRenderError",
    "SimplePromptProvider",
    "TemplatePromptProvider",
    "build_prompt",
]
