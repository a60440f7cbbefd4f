"""Schema compiler: Pydantic model class -> batches of field paths + field specs.

The compiler walks a target model once, resolving every field's annotation
against the prompt and model inherited from its enclosing model.  Leaves are
bucketed by :class:`BatchKey`; every leaf sharing a key is extracted by one
generation call.  Model-typed fields (and lists of models) are recorded so
the merger can address them, but never enter a batch.

Public API
----------
- :func:`compile_schema` - compile a model class into an immutable :class:`Schema`.
- :class:`SchemaCache` - thread-safe cache keyed by model class and compile options.
- :data:`default_cache` - process-wide cache used unless another is injected.
"""

from __future__ import annotations

import threading
import types
import typing
from collections.abc import Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Literal, Mapping, NamedTuple, Optional, Tuple, Type

from pydantic import BaseModel

from .annotations import annotation_of, hash_parameters, parse_annotation
from .config import ExtractOptions, field_model_key
from .errors import SchemaCompilationError
from .utils.logging import get_logger

logger = get_logger(__name__)

FieldKind = Literal["leaf", "model", "list"]

_SEQUENCE_ORIGINS = (list, tuple, set, frozenset)


class BatchKey(NamedTuple):
    """Grouping key: every leaf sharing one key is sent in one generation call."""

    prompt: str
    model: str
    parent_path: str
    params_hash: str = ""


@dataclass(frozen=True)
class FieldSpec:
    """Resolved location and model for one field path.

    ``index`` holds field positions (in ``model_fields`` order) from the
    record root, so it stays valid for any fresh instance of the target.
    """

    path: str
    index: Tuple[int, ...]
    model: str = ""
    kind: FieldKind = "leaf"
    parameters: Tuple[Tuple[str, str], ...] = ()

    @property
    def is_composite(self) -> bool:
        return self.kind != "leaf"


@dataclass(frozen=True)
class Schema:
    """Compiled view of one target model."""

    target: Type[BaseModel]
    batches: Mapping[BatchKey, Tuple[str, ...]]
    fields: Mapping[str, FieldSpec]
    parameters: Mapping[BatchKey, Mapping[str, str]] = field(default_factory=dict)

    @property
    def leaf_paths(self) -> List[str]:
        """Every batched field path, in batch order."""
        return [path for paths in self.batches.values() for path in paths]

    def batch_of(self, path: str) -> Optional[BatchKey]:
        for key, paths in self.batches.items():
            if path in paths:
                return key
        return None

    def has_model(self) -> bool:
        """True when any batch or field resolves a model on its own."""
        return any(key.model for key in self.batches) or any(
            spec.model for spec in self.fields.values()
        )


# ---------------------------------------------------------------------------
# Type classification
# ---------------------------------------------------------------------------


def _is_model_class(tp: Any) -> bool:
    return isinstance(tp, type) and issubclass(tp, BaseModel)


def _unwrap(tp: Any) -> Any:
    """Strip ``Annotated`` and ``Optional`` wrappers."""
    while True:
        origin = typing.get_origin(tp)
        if origin is typing.Annotated:
            tp = typing.get_args(tp)[0]
            continue
        args = typing.get_args(tp)
        if args and _is_union(origin):
            non_none = [arg for arg in args if arg is not type(None)]
            if len(non_none) == 1:
                tp = non_none[0]
                continue
        return tp


def _is_union(origin: Any) -> bool:
    return origin is typing.Union or origin is types.UnionType


def classify(annotation: Any) -> Tuple[FieldKind, Optional[Type[BaseModel]]]:
    """Return the field kind and, for composites, the nested model class."""
    tp = _unwrap(annotation)
    if _is_model_class(tp):
        return "model", tp
    origin = typing.get_origin(tp)
    if origin in _SEQUENCE_ORIGINS or origin is Sequence:
        args = [arg for arg in typing.get_args(tp) if arg is not Ellipsis]
        if len(args) == 1:
            inner = _unwrap(args[0])
            if _is_model_class(inner):
                return "list", inner
    return "leaf", None


# ---------------------------------------------------------------------------
# Compilation
# ---------------------------------------------------------------------------


def _join(parent: str, child: str) -> str:
    return child if not parent else f"{parent}.{child}"


def compile_schema(
    target: Type[Any],
    options: Optional[ExtractOptions] = None,
) -> Schema:
    """Compile *target* into a :class:`Schema`.

    Raises
    ------
    SchemaCompilationError
        If *target* is not a Pydantic model class or reaches itself.
    """
    if not _is_model_class(target):
        raise SchemaCompilationError(
            f"target must be a pydantic BaseModel subclass, got {target!r}"
        )

    opts = options or ExtractOptions()
    batches: Dict[BatchKey, List[str]] = {}
    parameters: Dict[BatchKey, Dict[str, str]] = {}
    fields: Dict[str, FieldSpec] = {}

    def walk(
        cls: Type[BaseModel],
        parent: str,
        inherited_prompt: str,
        inherited_model: str,
        index: Tuple[int, ...],
        stack: Tuple[type, ...],
    ) -> None:
        for position, (name, info) in enumerate(cls.model_fields.items()):
            if info.exclude is True:
                continue

            path = _join(parent, info.alias or name)
            resolved = parse_annotation(
                annotation_of(info),
                inherited_prompt,
                strict=opts.strict_annotations,
            )
            prompt, model = resolved.prompt, resolved.model
            if resolved.group is not None:
                group = opts.groups.get(resolved.group)
                if group is not None:
                    prompt, model = group.prompt, group.model
                else:
                    logger.debug(f"Unresolved group {resolved.group!r} on {path}; keeping placeholder prompt")

            if not model:
                model = inherited_model

            override = opts.field_models.get(field_model_key(cls, name))
            if override:
                model = override

            params = tuple(sorted(resolved.parameters.items()))
            kind, nested = classify(info.annotation)
            next_index = index + (position,)

            if nested is not None:
                if nested in stack:
                    raise SchemaCompilationError(
                        f"recursive model reference at {path!r}: {nested.__name__}"
                    )
                fields[path] = FieldSpec(path, next_index, model, kind, params)
                walk(nested, path, prompt, model, next_index, stack + (nested,))
                continue

            key = BatchKey(
                prompt=prompt,
                model=model,
                parent_path="" if opts.flatten_groups else parent,
                params_hash=hash_parameters(resolved.parameters),
            )
            batches.setdefault(key, []).append(path)
            parameters[key] = dict(resolved.parameters)
            fields[path] = FieldSpec(path, next_index, model, "leaf", params)

    walk(target, "", "", "", (), (target,))

    schema = Schema(
        target=target,
        batches=MappingProxyType({key: tuple(paths) for key, paths in batches.items()}),
        fields=MappingProxyType(fields),
        parameters=MappingProxyType(parameters),
    )
    logger.debug(
        f"Compiled schema for {target.__name__}: {len(schema.batches)} batches, {len(schema.fields)} fields"
    )
    return schema


class SchemaCache:
    """Thread-safe cache of compiled schemas.

    Keyed by model class identity plus the compile-relevant options, so the
    same type compiled under different groups or overrides is cached apart.
    Dropping the cache is always safe.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._schemas: Dict[Tuple[Any, ...], Schema] = {}

    def get(self, target: Type[Any], options: Optional[ExtractOptions] = None) -> Schema:
        opts = options or ExtractOptions()
        key = (target, opts.compile_key())
        with self._lock:
            cached = self._schemas.get(key)
        if cached is not None:
            return cached
        schema = compile_schema(target, opts)
        with self._lock:
            return self._schemas.setdefault(key, schema)

    def clear(self) -> None:
        with self._lock:
            self._schemas.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._schemas)


default_cache = SchemaCache()


__all__ = [
    "BatchKey",
    "FieldSpec",
    "FieldKind",
    "Schema",
    "classify",
    "compile_schema",
    "SchemaCache",
    "default_cache",
]
