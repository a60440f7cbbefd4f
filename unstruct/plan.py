"""
Execution planning and cost estimation.

A plan mirrors the shape of one extraction: a root ``SchemaAnalysis`` node,
one ``PromptCall`` child per batch and a trailing ``MergeFragments`` node.
Costs are abstract units computed bottom-up (``est_cost`` is a node's own
cost plus its children's); when a price table is supplied, prompt calls also
carry a real-currency ``act_cost``.

Two ways to build a plan:

- **Static** (:func:`build_static_plan`): token counts come from per-field
  category constants, no prompt is rendered.
- **Dry run** (:meth:`unstruct.engine.Unstructor.dry_run` +
  :func:`plan_from_stats`): prompts are rendered through the real prompt
  resolver and measured, the generation call is skipped.

:class:`PlanBuilder` picks the dry run when it can and falls back to static
analysis when the dry run fails.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Literal, Mapping, Optional, Sequence, Tuple, Type

from pydantic import BaseModel, Field

from .config import ExtractOptions
from .schema import Schema, SchemaCache, default_cache
from .utils.logging import get_logger

if TYPE_CHECKING:
    from .engine import Unstructor

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

CHARS_PER_TOKEN = 4
BASE_PROMPT_TOKENS = 50
DOCUMENT_TOKENS = 200
SCHEMA_ANALYSIS_TOKENS = 10

SCHEMA_ANALYSIS_BASE_COST = 1.0
SCHEMA_ANALYSIS_PER_FIELD = 0.5
PROMPT_CALL_BASE_COST = 3.0
PROMPT_CALL_TOKEN_FACTOR = 0.01
MERGE_FRAGMENTS_BASE_COST = 0.5
MERGE_FRAGMENTS_PER_FIELD = 0.1
DEFAULT_NODE_COST = 1.0

DEFAULT_DRY_RUN_MODEL = "gpt-3.5-turbo"

# field name -> (input tokens, output tokens)
FIELD_TOKEN_ESTIMATES: Dict[str, Tuple[int, int]] = {
    "name": (100, 20),
    "age": (80, 10),
    "email": (90, 25),
    "phone": (85, 15),
    "address": (150, 40),
    "description": (200, 60),
    "title": (120, 30),
    "company": (110, 25),
    "url": (95, 20),
    "date": (85, 12),
}
DEFAULT_FIELD_TOKENS = (100, 30)

# substring -> output tokens, checked in order for dry-run estimates
_OUTPUT_HINTS: Tuple[Tuple[Tuple[str, ...], int], ...] = (
    (("name", "title"), 15),
    (("address", "description"), 30),
    (("email", "phone", "url"), 20),
    (("age", "count", "number"), 5),
    (("date", "time"), 10),
)
_DEFAULT_OUTPUT_HINT = 20

NodeType = Literal["SchemaAnalysis", "PromptCall", "MergeFragments"]


# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModelPrice:
    """USD per 1,000 tokens."""

    prompt_per_1k: float
    completion_per_1k: float

    def cost(self, input_tokens: int, output_tokens: int) -> float:
        return input_tokens * self.prompt_per_1k / 1000.0 + output_tokens * self.completion_per_1k / 1000.0


def default_model_pricing() -> Dict[str, ModelPrice]:
    """Published list prices for common models (USD / 1K tokens)."""
    return {
        # OpenAI
        "gpt-4o": ModelPrice(0.0050, 0.0200),
        "gpt-4o-mini": ModelPrice(0.0006, 0.0024),
        "gpt-4.1": ModelPrice(0.0020, 0.0080),
        "gpt-4.1-mini": ModelPrice(0.0004, 0.0016),
        "gpt-4.1-nano": ModelPrice(0.0001, 0.0004),
        "gpt-3.5-turbo": ModelPrice(0.0005, 0.0015),
        # Google Gemini
        "gemini-2.5-pro": ModelPrice(0.00125, 0.0100),
        "gemini-2.5-flash": ModelPrice(0.00030, 0.0025),
        "gemini-2.0-flash": ModelPrice(0.00015, 0.0006),
        "gemini-1.5-pro": ModelPrice(0.00125, 0.0050),
        "gemini-1.5-flash": ModelPrice(0.000075, 0.00030),
        # Anthropic
        "claude-3-opus": ModelPrice(0.0150, 0.0750),
        "claude-3-sonnet": ModelPrice(0.0030, 0.0150),
        "claude-3-haiku": ModelPrice(0.0008, 0.0040),
    }


def lookup_price(model: str, pricing: Mapping[str, ModelPrice]) -> Optional[ModelPrice]:
    """Find *model* in *pricing*, retrying without a ``provider/`` prefix."""
    price = pricing.get(model)
    if price is None and "/" in model:
        price = pricing.get(model.split("/", 1)[1])
    return price


# ---------------------------------------------------------------------------
# Token estimates
# ---------------------------------------------------------------------------


def estimate_tokens_from_text(text: str) -> int:
    """Rough token count: one token per four characters, rounded up."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def _leaf_name(path: str) -> str:
    return path.rsplit(".", 1)[-1].lower()


def field_token_estimates(path: str) -> Tuple[int, int]:
    """(input, output) token estimate for one field, by its lowercase leaf name."""
    return FIELD_TOKEN_ESTIMATES.get(_leaf_name(path), DEFAULT_FIELD_TOKENS)


def estimate_output_tokens_for_fields(paths: Sequence[str]) -> int:
    """Dry-run output estimate: JSON overhead plus a per-field amount by name substring."""
    total = 10 + 2 * len(paths)
    for path in paths:
        name = _leaf_name(path)
        for fragments, tokens in _OUTPUT_HINTS:
            if any(fragment in name for fragment in fragments):
                total += tokens
                break
        else:
            total += _DEFAULT_OUTPUT_HINT
    return total


# ---------------------------------------------------------------------------
# Execution statistics
# ---------------------------------------------------------------------------


@dataclass
class GroupExecution:
    """One batch as seen by a dry run."""

    prompt_name: str
    model: str
    fields: List[str]
    input_tokens: int
    output_tokens: int
    parent_path: str = ""


@dataclass
class ExecutionStats:
    """Aggregate counts for one (dry-run) extraction."""

    prompt_calls: int = 0
    model_calls: Dict[str, int] = field(default_factory=dict)
    prompt_groups: int = 0
    fields_extracted: int = 0
    group_details: List[GroupExecution] = field(default_factory=list)
    total_input_tokens: int = 0
    total_output_tokens: int = 0

    def add(self, group: GroupExecution) -> None:
        self.group_details.append(group)
        self.prompt_calls += 1
        self.prompt_groups += 1
        self.model_calls[group.model] = self.model_calls.get(group.model, 0) + 1
        self.fields_extracted += len(group.fields)
        self.total_input_tokens += group.input_tokens
        self.total_output_tokens += group.output_tokens


# ---------------------------------------------------------------------------
# Plan tree
# ---------------------------------------------------------------------------


class PlanNode(BaseModel):
    """One node of the execution plan tree."""

    type: NodeType
    prompt_name: str = ""
    model: str = ""
    fields: List[str] = Field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    own_cost: float = 0.0
    est_cost: float = 0.0
    act_cost: Optional[float] = None
    children: List["PlanNode"] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    # root only
    expected_models: List[str] = Field(default_factory=list)
    expected_call_counts: Dict[str, int] = Field(default_factory=dict)

    def walk(self) -> Iterable["PlanNode"]:
        """Yield this node and every descendant, depth first."""
        yield self
        for child in self.children:
            yield from child.walk()

    def count(self, node_type: NodeType) -> int:
        return sum(1 for node in self.walk() if node.type == node_type)


PlanNode.model_rebuild()


def node_cost(node: PlanNode) -> float:
    """Abstract cost of *node* alone."""
    if node.type == "SchemaAnalysis":
        return SCHEMA_ANALYSIS_BASE_COST + len(node.fields) * SCHEMA_ANALYSIS_PER_FIELD
    if node.type == "PromptCall":
        return PROMPT_CALL_BASE_COST + node.input_tokens * PROMPT_CALL_TOKEN_FACTOR
    if node.type == "MergeFragments":
        return MERGE_FRAGMENTS_BASE_COST + len(node.fields) * MERGE_FRAGMENTS_PER_FIELD
    return DEFAULT_NODE_COST


def calculate_costs(node: PlanNode, pricing: Optional[Mapping[str, ModelPrice]] = None) -> float:
    """Fill ``own_cost``, ``est_cost`` and ``act_cost`` bottom-up; return ``est_cost``."""
    children_cost = sum(calculate_costs(child, pricing) for child in node.children)
    node.own_cost = node_cost(node)
    node.est_cost = node.own_cost + children_cost
    if pricing and node.type == "PromptCall" and node.model:
        price = lookup_price(node.model, pricing)
        if price is not None:
            node.act_cost = price.cost(node.input_tokens, node.output_tokens)
    return node.est_cost


def _unique(items: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(items))


def _summarise(root: PlanNode) -> None:
    counts: Dict[str, int] = {}
    for node in root.walk():
        if node.type == "PromptCall" and node.model:
            counts[node.model] = counts.get(node.model, 0) + 1
    root.expected_models = list(counts)
    root.expected_call_counts = counts


def _assemble(
    prompt_nodes: List[PlanNode],
    fields: List[str],
    root_input_tokens: int,
    pricing: Optional[Mapping[str, ModelPrice]],
) -> PlanNode:
    merge = PlanNode(type="MergeFragments", fields=list(fields))
    root = PlanNode(
        type="SchemaAnalysis",
        fields=list(fields),
        input_tokens=root_input_tokens,
        children=[*prompt_nodes, merge],
    )
    calculate_costs(root, pricing)
    _summarise(root)
    return root


def build_static_plan(
    schema: Schema,
    options: Optional[ExtractOptions] = None,
    pricing: Optional[Mapping[str, ModelPrice]] = None,
) -> PlanNode:
    """Plan from the compiled schema alone, using per-field token constants."""
    opts = options or ExtractOptions()
    nodes: List[PlanNode] = []
    for key, paths in schema.batches.items():
        estimates = [field_token_estimates(path) for path in paths]
        model = key.model or opts.model
        nodes.append(
            PlanNode(
                type="PromptCall",
                prompt_name=key.prompt or opts.fallback_prompt,
                model=model or DEFAULT_DRY_RUN_MODEL,
                fields=list(paths),
                input_tokens=BASE_PROMPT_TOKENS + sum(i for i, _ in estimates) + DOCUMENT_TOKENS,
                output_tokens=sum(o for _, o in estimates),
                metadata={"parent_path": key.parent_path, "source": "static"},
            )
        )
    fields = _unique(schema.leaf_paths)
    return _assemble(nodes, fields, SCHEMA_ANALYSIS_TOKENS + 5 * len(fields), pricing)


def plan_from_stats(
    stats: ExecutionStats,
    pricing: Optional[Mapping[str, ModelPrice]] = None,
) -> PlanNode:
    """Plan from dry-run statistics: one prompt call per recorded group."""
    nodes = [
        PlanNode(
            type="PromptCall",
            prompt_name=group.prompt_name,
            model=group.model,
            fields=list(group.fields),
            input_tokens=group.input_tokens,
            output_tokens=group.output_tokens,
            metadata={"parent_path": group.parent_path, "source": "dry_run"},
        )
        for group in stats.group_details
    ]
    fields = _unique(path for group in stats.group_details for path in group.fields)
    root = _assemble(nodes, fields, SCHEMA_ANALYSIS_TOKENS, pricing)
    root.expected_call_counts = dict(stats.model_calls)
    root.expected_models = list(stats.model_calls)
    return root


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


class PlanBuilder:
    """Build a plan for *target*, preferring a dry run over static analysis.

    Not thread-safe; create one builder per caller.
    """

    def __init__(
        self,
        target: Type[BaseModel],
        *,
        options: Optional[ExtractOptions] = None,
        unstructor: Optional["Unstructor"] = None,
        sample_document: str = "",
        cache: Optional[SchemaCache] = None,
    ) -> None:
        self.target = target
        self.options = options or ExtractOptions()
        self.unstructor = unstructor
        self.sample_document = sample_document
        self.cache = cache or default_cache

    def can_dry_run(self) -> bool:
        return self.unstructor is not None and bool(self.sample_document)

    def explain(self, pricing: Optional[Mapping[str, ModelPrice]] = None) -> PlanNode:
        if self.can_dry_run():
            try:
                stats = self.unstructor.dry_run(self.sample_document, self.options)
            except Exception as e:
                logger.warning(f"Dry run failed, falling back to static analysis: {e}")
            else:
                return plan_from_stats(stats, pricing)
        schema = self.cache.get(self.target, self.options)
        return build_static_plan(schema, self.options, pricing)

    def explain_pretty(
        self,
        format: Literal["text", "json"] = "text",
        pricing: Optional[Mapping[str, ModelPrice]] = None,
    ) -> str:
        from .plan_format import format_plan

        return format_plan(self.explain(pricing), format)


__all__ = [
    "CHARS_PER_TOKEN",
    "BASE_PROMPT_TOKENS",
    "DOCUMENT_TOKENS",
    "DEFAULT_DRY_RUN_MODEL",
    "FIELD_TOKEN_ESTIMATES",
    "ModelPrice",
    "default_model_pricing",
    "lookup_price",
    "estimate_tokens_from_text",
    "field_token_estimates",
    "estimate_output_tokens_for_fields",
    "GroupExecution",
    "ExecutionStats",
    "PlanNode",
    "node_cost",
    "calculate_costs",
    "build_static_plan",
    "plan_from_stats",
    "PlanBuilder",
]
