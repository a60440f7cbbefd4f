"""Exception hierarchy for schema compilation, dispatch and merge failures."""

from __future__ import annotations

from typing import Iterable, Optional


class UnstructError(Exception):
    """Base class for every error raised by ``unstruct``."""

    retryable = False


class EmptyInputError(UnstructError):
    """No source material was supplied."""


class ModelUnspecifiedError(UnstructError):
    """No default model is configured and nothing in the schema resolves one."""


class SchemaCompilationError(UnstructError):
    """The target type cannot be compiled into a schema."""


class UnresolvedPromptError(UnstructError):
    """A batch has no prompt label (and no fallback), or its template failed to render."""

    def __init__(self, message: str, fields: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.fields = tuple(fields)


class GenerationError(UnstructError):
    """The generation capability failed after retries or failed fatally."""

    retryable = True

    def __init__(
        self,
        message: str,
        *,
        prompt: Optional[str] = None,
        model: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.prompt = prompt
        self.model = model


class GenerationCancelled(GenerationError):
    """A batch observed the shared cancel signal and stopped."""

    retryable = False


class ExtractionTimeoutError(GenerationError):
    """The overall extraction deadline expired before every batch finished."""

    retryable = False


class InvalidParameterError(GenerationError):
    """A generation parameter from a field annotation is malformed or out of range."""

    retryable = False


class MergeError(UnstructError):
    """A fragment could not be parsed or a value does not fit its destination field."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path


def is_retryable(exc: BaseException) -> bool:
    """Return True when *exc* may be retried by the dispatch layer.

    Errors raised by third-party invokers carry no flag and are retried.
    """
    return bool(getattr(exc, "retryable", True))


__all__ = [
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
    "is_retryable",
]
