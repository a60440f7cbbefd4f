"""YAML record templates: declare an extraction target without writing a model class.

A template is compiled into an annotated Pydantic model via
:func:`pydantic.create_model`; no ``exec()`` is involved.  Example::

    name: Invoice
    unstruct: basic                 # inherited by sections without their own
    sections:
      - name: number
        type: str
      - name: total
        type: float
        unstruct: prompt/amounts/model/openai/gpt-4o-mini
      - name: status
        type: enum
        values: [paid, open]
      - name: vendor
        type: object
        unstruct: group/parties
        fields:
          - name: name
            type: str
          - name: address
            type: str
            required: false
      - name: lines
        type: list
        item:
          type: object
          fields:
            - name: description
              type: str
            - name: amount
              type: float

Public API
----------
- :func:`parse_template` - parse raw YAML into a :class:`TemplateMeta` descriptor.
- :func:`compile_template` - compile a YAML string into an annotated model class.
- :func:`compile_template_file` - same, but reads from a file path.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, List, Optional, Type, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, create_model

from .annotations import Unstruct
from .errors import SchemaCompilationError

__all__ = [
    "ItemSpec",
    "SectionSpec",
    "TemplateMeta",
    "parse_template",
    "compile_template",
    "compile_template_file",
]

# ---------------------------------------------------------------------------
# Descriptors
# ---------------------------------------------------------------------------


class ItemSpec(BaseModel):
    """A field inside an ``object`` section, or the element of a ``list``.

    ``name`` is optional because list ``item`` descriptors describe the
    element type without being a named field themselves.
    """

    name: Optional[str] = None
    type: str  # str | int | float | bool | date | datetime | enum | object | list
    required: bool = True
    description: Optional[str] = None
    unstruct: str = ""
    values: Optional[List[str]] = None
    fields: Optional[List["ItemSpec"]] = None
    item: Optional["ItemSpec"] = None


class SectionSpec(ItemSpec):
    """One top-level section of a template."""

    name: str


class TemplateMeta(BaseModel):
    """Parsed template."""

    name: str
    description: Optional[str] = None
    unstruct: str = ""
    sections: List[SectionSpec]


ItemSpec.model_rebuild()
SectionSpec.model_rebuild()


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_template(yaml_content: str) -> TemplateMeta:
    """Parse a YAML template string into a :class:`TemplateMeta`.

    Raises
    ------
    SchemaCompilationError
        If the YAML is malformed or does not describe a template.
    """
    try:
        data = yaml.safe_load(yaml_content)
    except yaml.YAMLError as e:
        raise SchemaCompilationError(f"invalid template YAML: {e}") from e
    if not isinstance(data, dict):
        raise SchemaCompilationError("template must be a YAML mapping")
    try:
        return TemplateMeta(**data)
    except ValidationError as e:
        raise SchemaCompilationError(f"invalid template: {e}") from e


# ---------------------------------------------------------------------------
# Type compilation helpers
# ---------------------------------------------------------------------------

_SCALAR_TYPES: dict[str, type] = {
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "date": date,
    "datetime": datetime,
}


def _type_name(parent: str, child: Optional[str]) -> str:
    return f"{parent}_{child or 'Item'}".lstrip("_").title().replace("_", "")


def _build_enum(name: str, values: list[str]) -> type:
    return Enum(name, {v: v for v in values}, type=str)  # type: ignore[misc]


def _describe(spec: ItemSpec) -> Optional[str]:
    desc = spec.description or ""
    if spec.type == "enum" and spec.values:
        values_str = ", ".join(spec.values)
        desc = f"{desc} (allowed: {values_str})" if desc else f"One of: {values_str}"
    return desc or None


def _field_definition(spec: ItemSpec, py_type: Any, annotation: str) -> tuple[Any, Any]:
    if not spec.required:
        py_type = Optional[py_type]
    if annotation:
        py_type = Annotated[py_type, Unstruct(annotation)]
    default = ... if spec.required else None
    return py_type, Field(default, description=_describe(spec))


def _build_model(model_name: str, specs: List[ItemSpec], inherited: str = "") -> Type[BaseModel]:
    definitions: dict[str, Any] = {}
    for spec in specs:
        if spec.name is None:
            raise SchemaCompilationError(f"fields inside {model_name!r} must have a name")
        py_type = _resolve_type(spec, parent_name=model_name)
        definitions[spec.name] = _field_definition(spec, py_type, spec.unstruct or inherited)
    return create_model(model_name, **definitions)  # type: ignore[call-overload]


def _resolve_type(spec: ItemSpec, *, parent_name: str = "") -> Any:
    """Map a spec's ``type`` string to a concrete Python / Pydantic type."""
    type_str = spec.type

    if type_str in _SCALAR_TYPES:
        return _SCALAR_TYPES[type_str]

    if type_str == "enum":
        if not spec.values:
            raise SchemaCompilationError(f"enum field {spec.name!r} must provide 'values'")
        return _build_enum(_type_name(parent_name, spec.name), spec.values)

    if type_str == "object":
        if not spec.fields:
            raise SchemaCompilationError(f"object field {spec.name!r} must provide 'fields'")
        # nested fields inherit through the schema compiler, not here
        return _build_model(_type_name(parent_name, spec.name), spec.fields)

    if type_str == "list":
        if spec.item is None:
            return list[str]
        item_type: Union[type, Any] = _resolve_type(spec.item, parent_name=_type_name(parent_name, spec.name))
        return list[item_type]  # type: ignore[valid-type]

    raise SchemaCompilationError(f"unsupported type {type_str!r} in field {spec.name!r}")


# ---------------------------------------------------------------------------
# Compilation
# ---------------------------------------------------------------------------


def compile_template(yaml_content: str) -> Type[BaseModel]:
    """Compile a YAML template into an annotated Pydantic model class.

    Sections without an ``unstruct`` annotation take the template-level one.
    """
    meta = parse_template(yaml_content)
    model = _build_model(meta.name, list(meta.sections), inherited=meta.unstruct)
    if meta.description:
        model.__doc__ = meta.description
    return model


def compile_template_file(path: str | Path) -> Type[BaseModel]:
    """Read a ``.yaml`` / ``.yml`` template file and compile it."""
    content = Path(path).read_text(encoding="utf-8")
    return compile_template(content)
