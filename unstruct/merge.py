"""Merge raw model responses into a typed record.

Each fragment is a JSON object keyed by field path.  Keys may be dotted
(``"address.city"``) or nested (``{"address": {"city": ...}}``); both resolve
to the same :class:`~unstruct.schema.FieldSpec`, whose index path addresses
the field from the record root.  Keys that pass through a list of models, in
either form, are applied to every element of that list.  Values are
converted with a Pydantic ``TypeAdapter`` of the field's declared
annotation before assignment.
"""

from __future__ import annotations

import enum
import json
import typing
from collections.abc import Mapping as AbcMapping
from collections.abc import Sequence as AbcSequence
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Tuple, Type, TypeVar, Union

from pydantic import BaseModel, TypeAdapter, ValidationError

from .errors import MergeError
from .schema import FieldSpec, Schema, classify
from .utils.logging import get_logger

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)


@dataclass(frozen=True)
class Fragment:
    """Raw output of one batch call, tagged with the prompt and model that produced it."""

    prompt: str
    model: str
    raw: bytes
    fields: Tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Response cleanup
# ---------------------------------------------------------------------------


def sanitize_json_response(raw: Union[bytes, str]) -> str:
    """Trim whitespace and a surrounding Markdown code fence.

    >>> sanitize_json_response('```json\\n{"a": 1}\\n```')
    '{"a": 1}'
    """
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    text = text.strip()
    if text.startswith("```json"):
        text = text[len("```json"):]
    elif text.startswith("```"):
        text = text[len("```"):]
    if text.endswith("```"):
        text = text[: -len("```")]
    return text.strip()


# ---------------------------------------------------------------------------
# Zero values
# ---------------------------------------------------------------------------


def _zero_for(annotation: Any) -> Any:
    origin = typing.get_origin(annotation)
    args = typing.get_args(annotation)

    if origin is typing.Annotated:
        return _zero_for(args[0])
    if args and type(None) in args:
        return None
    if origin is typing.Literal:
        return args[0] if args else None
    if isinstance(annotation, type):
        if issubclass(annotation, BaseModel):
            return zero_value(annotation)
        if issubclass(annotation, enum.Enum):
            return next(iter(annotation), None)
        if annotation is bool:
            return False
        if annotation in (str, int, float, bytes):
            return annotation()
    if origin in (list, set, frozenset, tuple):
        return origin()
    if origin in (dict, AbcMapping) or annotation is dict:
        return {}
    if origin is AbcSequence or annotation is list:
        return []
    return None


def zero_value(model: Type[M]) -> M:
    """Build an unvalidated instance of *model* with defaults or type zero values."""
    values: Dict[str, Any] = {}
    for name, info in model.model_fields.items():
        if info.is_required():
            values[name] = _zero_for(info.annotation)
    return model.model_construct(**values)


# ---------------------------------------------------------------------------
# Patching
# ---------------------------------------------------------------------------

_adapters: Dict[Tuple[type, str], TypeAdapter] = {}


def _adapter(cls: type, name: str) -> TypeAdapter:
    key = (cls, name)
    adapter = _adapters.get(key)
    if adapter is None:
        adapter = TypeAdapter(cls.model_fields[name].annotation)
        _adapters[key] = adapter
    return adapter


def _set_at(obj: BaseModel, index: Tuple[int, ...], value: Any, path: str) -> None:
    cls = type(obj)
    names = list(cls.model_fields)
    try:
        name = names[index[0]]
    except IndexError:
        raise MergeError(f"index path does not fit {cls.__name__}", path=path) from None

    if len(index) == 1:
        try:
            converted = _adapter(cls, name).validate_python(value)
        except ValidationError as e:
            raise MergeError(f"{path}: {e.errors()[0]['msg']}", path=path) from e
        setattr(obj, name, converted)
        return

    kind, nested = classify(cls.model_fields[name].annotation)
    child = getattr(obj, name)
    if kind == "list" and nested is not None:
        if not child:
            child = [zero_value(nested)]
            setattr(obj, name, child)
        for element in child:
            _set_at(element, index[1:], value, path)
        return
    if child is None:
        if nested is None:
            raise MergeError(f"cannot traverse into non-model field {name!r}", path=path)
        child = zero_value(nested)
        setattr(obj, name, child)
    _set_at(child, index[1:], value, path)


def _join(prefix: str, key: str) -> str:
    return key if not prefix else f"{prefix}.{key}"


def _patch_object(
    record: BaseModel,
    payload: Mapping[str, Any],
    fields: Mapping[str, FieldSpec],
    prefix: str,
) -> None:
    for key, value in payload.items():
        path = _join(prefix, key)
        spec = fields.get(path)
        if spec is None:
            logger.debug(f"Ignoring unknown key {path!r}")
            continue
        if spec.is_composite and isinstance(value, dict):
            _patch_object(record, value, fields, path)
            continue
        _set_at(record, spec.index, value, path)


def patch_record(
    record: BaseModel,
    raw: Union[bytes, str],
    fields: Mapping[str, FieldSpec],
) -> None:
    """Apply one JSON fragment to *record* in place.

    Raises:
        MergeError: The payload is not a JSON object, or a value fails
            validation for its field.  Assignments made before the failing
            key are kept.
    """
    text = sanitize_json_response(raw)
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise MergeError(f"response is not valid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise MergeError(f"response must be a JSON object, got {type(payload).__name__}")
    _patch_object(record, payload, fields, "")


def merge_fragments(schema: Schema, fragments: Iterable[Fragment]) -> BaseModel:
    """Build a zero-valued record of ``schema.target`` and apply *fragments* in order."""
    record = zero_value(schema.target)
    count = 0
    for fragment in fragments:
        logger.debug(f"Merging fragment from prompt={fragment.prompt!r} model={fragment.model!r}")
        patch_record(record, fragment.raw, schema.fields)
        count += 1
    logger.info(f"Merged {count} fragments into {schema.target.__name__}")
    return record


__all__ = [
    "Fragment",
    "sanitize_json_response",
    "zero_value",
    "patch_record",
    "merge_fragments",
]
