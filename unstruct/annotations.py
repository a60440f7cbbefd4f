"""Field annotation markers and the annotation grammar.

A field opts into a prompt and/or model with a short string::

    class Person(BaseModel):
        name: Annotated[str, Unstruct("basic")]
        age: Annotated[int, Unstruct("basic,gemini-1.5-flash")]
        bio: str = Field("", json_schema_extra={"unstruct": "prompt/bio/model/openai/gpt-4o?temperature=0.2"})

Grammar (a trailing ``?k=v&...`` block is split off first and becomes the
parameter map):

- ``""``                                  inherit prompt and model
- ``group/<name>``                        named group, resolved at compile time
- ``model/<model-id>``                    model only, prompt inherited
- ``prompt/<name>[/model/<model-id>]``    prompt, optionally model
- ``<prompt>,<model>``                    legacy pair
- ``<token>``                             prompt, or model when it looks like a model id
- three or more comma parts               malformed, inherit
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional
from urllib.parse import parse_qsl

from pydantic.fields import FieldInfo

ANNOTATION_KEY = "unstruct"
GROUP_PLACEHOLDER_PREFIX = "group:"

_PROVIDER_PREFIXES = frozenset(
    {
        "openai",
        "azure",
        "anthropic",
        "ollama",
        "gemini",
        "google",
        "vertex",
        "vertex_ai",
        "vertexai",
        "bedrock",
        "cohere",
        "mistral",
        "huggingface",
        "together_ai",
        "groq",
        "xai",
    }
)

_MODEL_FAMILY_PREFIXES = (
    "gemini-",
    "gemini_",
    "gpt-",
    "gpt4",
    "gpt-oss",
    "claude-",
    "o1-",
    "o3-",
    "o4-",
    "llama",
    "mistral-",
    "mixtral",
    "gemma",
    "qwen",
    "deepseek",
    "command-r",
)


@dataclass(frozen=True)
class Unstruct:
    """``Annotated`` metadata carrying a field's extraction annotation."""

    annotation: str = ""


@dataclass(frozen=True)
class ResolvedAnnotation:
    """Result of parsing one annotation against the inherited prompt."""

    prompt: str = ""
    model: str = ""
    parameters: Dict[str, str] = field(default_factory=dict)
    group: Optional[str] = None


def looks_like_model(token: str) -> bool:
    """Heuristic used for bare single-token annotations.

    A token is treated as a model id when it carries a known provider prefix
    (``openai/gpt-4o``) or starts with a known model-family fragment
    (``gemini-1.5-pro``, ``gpt-4o-mini``).
    """
    value = token.strip().lower()
    if not value:
        return False
    if "/" in value:
        provider = value.split("/", 1)[0]
        if provider in _PROVIDER_PREFIXES:
            return True
    return value.startswith(_MODEL_FAMILY_PREFIXES) or value in {"gemini-pro", "gemini-flash"}


def parse_parameters(query: str) -> Dict[str, str]:
    """Parse a ``k=v&k2=v2`` block into a dict; the last value wins on repeats."""
    return {key: value for key, value in parse_qsl(query, keep_blank_values=True)}


def hash_parameters(parameters: Mapping[str, str]) -> str:
    """Deterministic short hash of a parameter map, ``""`` when empty."""
    if not parameters:
        return ""
    canonical = "&".join(f"{key}={parameters[key]}" for key in sorted(parameters))
    return hashlib.md5(canonical.encode("utf-8")).hexdigest()[:8]


def parse_annotation(
    text: Optional[str],
    inherited_prompt: str = "",
    *,
    strict: bool = False,
) -> ResolvedAnnotation:
    """Resolve *text* against *inherited_prompt*.

    An empty model in the result means "inherit the enclosing model"; group
    references come back with ``group`` set and the placeholder prompt
    ``group:<name>``.  With ``strict=True`` a bare token is always a prompt.
    """
    raw = (text or "").strip()
    if not raw:
        return ResolvedAnnotation(prompt=inherited_prompt)

    base, _, query = raw.partition("?")
    parameters = parse_parameters(query) if query else {}

    if base.startswith("group/"):
        name = base[len("group/"):]
        return ResolvedAnnotation(
            prompt=GROUP_PLACEHOLDER_PREFIX + name,
            parameters=parameters,
            group=name,
        )

    if base.startswith("model/"):
        return ResolvedAnnotation(
            prompt=inherited_prompt,
            model=base[len("model/"):],
            parameters=parameters,
        )

    if base.startswith("prompt/"):
        rest = base[len("prompt/"):]
        prompt, sep, model = rest.partition("/model/")
        if not sep and rest.endswith("/model"):
            prompt = rest[: -len("/model")]
        return ResolvedAnnotation(
            prompt=prompt or inherited_prompt,
            model=model,
            parameters=parameters,
        )

    items = base.split(",")
    if len(items) == 1:
        token = items[0].strip()
        if not strict and looks_like_model(token):
            return ResolvedAnnotation(prompt=inherited_prompt, model=token, parameters=parameters)
        return ResolvedAnnotation(prompt=token or inherited_prompt, parameters=parameters)
    if len(items) == 2:
        prompt, model = items[0].strip(), items[1].strip()
        return ResolvedAnnotation(prompt=prompt or inherited_prompt, model=model, parameters=parameters)

    # malformed, silently inherit
    return ResolvedAnnotation(prompt=inherited_prompt)


def annotation_of(info: FieldInfo) -> str:
    """Return the raw annotation string attached to a Pydantic field, or ``""``."""
    for item in info.metadata:
        if isinstance(item, Unstruct):
            return item.annotation
    extra: Any = info.json_schema_extra
    if isinstance(extra, dict):
        value = extra.get(ANNOTATION_KEY)
        if isinstance(value, str):
            return value
    return ""


__all__ = [
    "ANNOTATION_KEY",
    "GROUP_PLACEHOLDER_PREFIX",
    "Unstruct",
    "ResolvedAnnotation",
    "looks_like_model",
    "parse_parameters",
    "hash_parameters",
    "parse_annotation",
    "annotation_of",
]
