# unstruct/engine.py
"""
Extraction engine: compile the target, fan batches out to the generation
capability, merge the fragments.

Usage::

    from typing import Annotated
    from pydantic import BaseModel
    from unstruct import Unstruct, Unstructor, SimplePromptProvider, DspyInvoker

    class Person(BaseModel):
        name: Annotated[str, Unstruct("basic")]
        age: Annotated[int, Unstruct("basic")]

    prompts = SimplePromptProvider({"basic": "Extract {keys} as a JSON object."})
    u = Unstructor(Person, DspyInvoker.from_config(), prompts)
    person = u.extract(["John is 25."], model="openai/gpt-4o-mini")

One task is created per batch.  Tasks share a cancel event: the first
failure (or the overall timeout) cancels the rest and is the single error
the caller sees.  The record is only built after every task finished.
"""

from __future__ import annotations

import threading
from typing import Any, Generic, Iterable, List, Mapping, Optional, Sequence, Tuple, Type, TypeVar

from pydantic import BaseModel

from .config import ExtractOptions
from .errors import GenerationError, ModelUnspecifiedError, UnresolvedPromptError, UnstructError
from .invokers import Invoker
from .merge import Fragment, merge_fragments
from .parts import Asset, Part, content_parts, document_text, normalize_assets
from .plan import (
    DEFAULT_DRY_RUN_MODEL,
    ExecutionStats,
    GroupExecution,
    default_model_pricing,
    estimate_output_tokens_for_fields,
    estimate_tokens_from_text,
    plan_from_stats,
)
from .providers import PromptProvider
from .retry import call_with_retry
from .runner import TaskGroup
from .schema import BatchKey, Schema, SchemaCache, default_cache
from .utils.logging import get_logger, log_llm_response, log_prompt

logger = get_logger(__name__)

T = TypeVar("T", bound=BaseModel)

GENERIC_INSTRUCTION = "Extract the following fields from the document and return them as a JSON object: {keys}"


class Unstructor(Generic[T]):
    """Extract instances of *target* from unstructured source material.

    Args:
        target: Pydantic model class to populate.
        invoker: Generation capability (see :class:`unstruct.invokers.Invoker`).
        prompts: Prompt resolver (see :class:`unstruct.providers.PromptProvider`).
        cache: Schema cache; the process-wide default when omitted.
    """

    def __init__(
        self,
        target: Type[T],
        invoker: Invoker,
        prompts: PromptProvider,
        *,
        cache: Optional[SchemaCache] = None,
    ) -> None:
        self.target = target
        self.invoker = invoker
        self.prompts = prompts
        self.cache = cache or default_cache

    # -- options -------------------------------------------------------------

    def _options(self, options: Optional[ExtractOptions], overrides: Mapping[str, Any]) -> ExtractOptions:
        opts = options if options is not None else ExtractOptions.from_config()
        if overrides:
            opts = ExtractOptions(**{**opts.model_dump(), **overrides})
        return opts

    def schema(self, options: Optional[ExtractOptions] = None) -> Schema:
        return self.cache.get(self.target, options)

    # -- per-batch resolution ------------------------------------------------

    def _render(self, label: str, paths: Sequence[str], document: str) -> str:
        try:
            return self.prompts.get_prompt(label, 1, list(paths), document)
        except UnstructError:
            raise
        except Exception as e:
            raise UnresolvedPromptError(f"prompt {label!r} could not be rendered: {e}", fields=paths) from e

    def _run_batch(
        self,
        schema: Schema,
        key: BatchKey,
        paths: Tuple[str, ...],
        opts: ExtractOptions,
        document: str,
        parts: List[Part],
        cancel: threading.Event,
        sink: List[Fragment],
        lock: threading.Lock,
    ) -> None:
        label = key.prompt or opts.fallback_prompt
        if not label:
            raise UnresolvedPromptError(
                f"no prompt for fields {', '.join(paths)} and no fallback prompt configured",
                fields=paths,
            )
        model = key.model or opts.model
        if not model:
            raise ModelUnspecifiedError(f"no model resolved for fields {', '.join(paths)}")

        prompt = self._render(label, paths, document)
        parameters = schema.parameters.get(key, {})
        log_prompt(logger, f"{label} -> {model}", prompt)

        def attempt() -> bytes:
            return self.invoker.generate(model, prompt, parts, parameters=parameters, cancel=cancel)

        try:
            raw = call_with_retry(
                attempt,
                max_retries=opts.max_retries,
                backoff=opts.backoff,
                cancel=cancel,
                label=label,
            )
        except UnstructError:
            raise
        except Exception as e:
            raise GenerationError(f"{label} ({model}): {e}", prompt=label, model=model) from e

        log_llm_response(logger, f"{label} <- {model}", raw.decode("utf-8", errors="replace"))
        with lock:
            sink.append(Fragment(prompt=label, model=model, raw=raw, fields=paths))

    # -- public API ----------------------------------------------------------

    def extract(
        self,
        assets: Iterable[Asset] | Asset,
        options: Optional[ExtractOptions] = None,
        **overrides: Any,
    ) -> T:
        """Populate a new *target* instance from *assets*.

        Keyword overrides are applied on top of *options* (or of the
        configured defaults when *options* is omitted).

        Raises:
            EmptyInputError: No usable source material.
            ModelUnspecifiedError: Neither the options nor the schema name a model.
            UnresolvedPromptError: A batch has no prompt or its prompt failed to render.
            GenerationError: A generation call failed, was cancelled, or timed out.
            MergeError: A response could not be merged into the record.
        """
        parts = normalize_assets(assets)
        opts = self._options(options, overrides)
        schema = self.schema(opts)

        if not opts.model and not schema.has_model():
            raise ModelUnspecifiedError(
                f"no default model configured and no field of {self.target.__name__} names one"
            )

        document = document_text(parts)
        extra_parts = content_parts(parts)
        fragments: List[Fragment] = []
        lock = threading.Lock()

        group = TaskGroup(max_concurrency=opts.max_concurrency, timeout=opts.timeout)
        for key, paths in schema.batches.items():
            group.go(
                lambda key=key, paths=paths: self._run_batch(
                    schema, key, paths, opts, document, extra_parts, group.cancel_event, fragments, lock
                )
            )
        logger.info(f"Dispatching {len(schema.batches)} batches for {self.target.__name__}")
        group.wait()

        return merge_fragments(schema, fragments)  # type: ignore[return-value]

    def extract_text(
        self,
        document: str,
        options: Optional[ExtractOptions] = None,
        **overrides: Any,
    ) -> T:
        """Convenience wrapper around :meth:`extract` for one text document."""
        return self.extract([document], options, **overrides)

    def dry_run(
        self,
        assets: Iterable[Asset] | Asset,
        options: Optional[ExtractOptions] = None,
        **overrides: Any,
    ) -> ExecutionStats:
        """Render every batch prompt and estimate tokens without calling the invoker."""
        parts = normalize_assets(assets)
        opts = self._options(options, overrides)
        schema = self.schema(opts)
        document = document_text(parts)

        stats = ExecutionStats()
        for key, paths in schema.batches.items():
            label = key.prompt or opts.fallback_prompt
            model = key.model or opts.model or DEFAULT_DRY_RUN_MODEL
            try:
                if not label:
                    raise UnresolvedPromptError("no prompt label", fields=paths)
                prompt = self._render(label, paths, document)
            except UnresolvedPromptError as e:
                logger.warning(f"Dry run: using generic instruction for {', '.join(paths)}: {e}")
                prompt = GENERIC_INSTRUCTION.replace("{keys}", ", ".join(paths)) + "\n\n" + document

            stats.add(
                GroupExecution(
                    prompt_name=label,
                    model=model,
                    fields=list(paths),
                    input_tokens=estimate_tokens_from_text(prompt),
                    output_tokens=estimate_output_tokens_for_fields(paths),
                    parent_path=key.parent_path,
                )
            )
        logger.info(
            f"Dry run for {self.target.__name__}: {stats.prompt_calls} calls, "
            f"{stats.total_input_tokens} in / {stats.total_output_tokens} out tokens"
        )
        return stats

    def explain(
        self,
        assets: Iterable[Asset] | Asset,
        options: Optional[ExtractOptions] = None,
        **overrides: Any,
    ) -> str:
        """Dry run rendered as a text outline with default pricing."""
        from .plan_format import format_text

        stats = self.dry_run(assets, options, **overrides)
        return format_text(plan_from_stats(stats, default_model_pricing()))


__all__ = ["Unstructor", "GENERIC_INSTRUCTION"]
