"""
unstruct - Typed Record Extraction from Unstructured Content

Turns a Pydantic model plus free-form source material (text, images, files)
into a populated instance of that model, calling the LLM once per group of
related fields instead of once per field.

Main Components:
    - unstruct.schema: Annotation-driven schema compiler and cache
    - unstruct.engine: Concurrent batch dispatch, retry and cancellation
    - unstruct.merge: JSON fragment merging into the typed record
    - unstruct.plan: Static and dry-run cost estimation
    - unstruct.templates: YAML record templates compiled to models
"""

from .annotations import Unstruct, parse_annotation
from .config import ExtractOptions, GroupDefinition, UnstructConfig, get_config
from .engine import Unstructor
from .errors import (
    EmptyInputError,
    ExtractionTimeoutError,
    GenerationCancelled,
    GenerationError,
    InvalidParameterError,
    MergeError,
    ModelUnspecifiedError,
    SchemaCompilationError,
    UnresolvedPromptError,
    UnstructError,
)
from .invokers import DspyInvoker, Invoker
from .merge import Fragment
from .parts import Part
from .plan import ExecutionStats, ModelPrice, PlanBuilder, PlanNode, default_model_pricing
from .plan_format import format_json, format_text, render_plan
from .providers import PromptProvider, SimplePromptProvider, TemplatePromptProvider
from .schema import BatchKey, FieldSpec, Schema, SchemaCache, compile_schema, default_cache
from .templates import compile_template, compile_template_file

__version__ = "0.1.0"

__all__ = [
    "Unstruct",
    "parse_annotation",
    "ExtractOptions",
    "GroupDefinition",
    "UnstructConfig",
    "get_config",
    "Unstructor",
    "UnstructError",
    "EmptyInputError",
    "ModelUnspecifiedError",
    "SchemaCompilationError",
    "UnresolvedPromptError",
    "GenerationError",
    "GenerationCancelled",
    "ExtractionTimeoutError",
    "InvalidParameterError",
    "MergeError",
    "Invoker",
    "DspyInvoker",
    "Fragment",
    "Part",
    "ExecutionStats",
    "ModelPrice",
    "PlanBuilder",
    "PlanNode",
    "default_model_pricing",
    "format_text",
    "format_json",
    "render_plan",
    "PromptProvider",
    "SimplePromptProvider",
    "TemplatePromptProvider",
    "BatchKey",
    "FieldSpec",
    "Schema",
    "SchemaCache",
    "compile_schema",
    "default_cache",
    "compile_template",
    "compile_template_file",
]
