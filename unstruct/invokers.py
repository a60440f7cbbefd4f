"""
Generation capability: the interface the engine calls and a DSPy-backed adapter.

An :class:`Invoker` receives a model id, the rendered prompt, the non-text
content parts and the batch's generation parameters, and returns the raw
response bytes.  The engine never interprets those bytes beyond JSON
parsing in the merger.

``DspyInvoker`` wraps one ``dspy.LM`` per (model, generation kwargs).  Like
any LiteLLM-routed LM it accepts provider-qualified model ids; the short
``vertex/`` prefix used in annotations is mapped to LiteLLM's ``vertex_ai/``.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple, runtime_checkable
from urllib.parse import urlparse

from .errors import GenerationCancelled, GenerationError, InvalidParameterError
from .parts import Part
from .utils.logging import get_logger

logger = get_logger(__name__)


@runtime_checkable
class Invoker(Protocol):
    """Anything that can turn (model, prompt, parts) into raw response bytes."""

    def generate(
        self,
        model: str,
        prompt: str,
        parts: Sequence[Part],
        *,
        parameters: Optional[Mapping[str, str]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> bytes:
        ...


# ---------------------------------------------------------------------------
# Generation parameters
# ---------------------------------------------------------------------------

# annotation name -> (LM kwarg, converter, lower bound, upper bound, lower inclusive)
_PARAMETERS: Dict[str, Tuple[str, Callable[[str], Any], float, Optional[float], bool]] = {
    "temperature": ("temperature", float, 0.0, 1.0, True),
    "topP": ("top_p", float, 0.0, 1.0, True),
    "topK": ("top_k", int, 0, None, False),
    "maxTokens": ("max_tokens", int, 0, None, False),
    "maxOutputTokens": ("max_tokens", int, 0, None, False),
}


def generation_kwargs(parameters: Optional[Mapping[str, str]]) -> Dict[str, Any]:
    """Validate annotation parameters and translate them into LM keyword arguments.

    Unknown parameters are ignored.

    Raises:
        InvalidParameterError: A value does not parse or is out of range.
    """
    kwargs: Dict[str, Any] = {}
    for name, raw in (parameters or {}).items():
        rule = _PARAMETERS.get(name)
        if rule is None:
            logger.debug(f"Ignoring unknown generation parameter {name!r}")
            continue
        kwarg, convert, low, high, low_inclusive = rule
        try:
            value = convert(raw)
        except (TypeError, ValueError):
            raise InvalidParameterError(f"invalid {name} value: {raw!r}") from None
        too_low = value < low if low_inclusive else value <= low
        too_high = high is not None and value > high
        if too_low or too_high:
            bounds = f"between {low} and {high}" if high is not None else f"greater than {low}"
            raise InvalidParameterError(f"{name} must be {bounds}, got {raw!r}")
        kwargs[kwarg] = value
    return kwargs


# ---------------------------------------------------------------------------
# Harmony token stripping (gpt-oss via vLLM-MLX)
# ---------------------------------------------------------------------------

_HARMONY_FINAL = "<|channel|>final<|message|>"


def strip_harmony_tokens(text: str) -> str:
    """Return only the ``final`` channel of a Harmony-formatted response.

    Text without Harmony tokens is returned unchanged.
    """
    if _HARMONY_FINAL in text:
        return text.split(_HARMONY_FINAL, 1)[1]
    return text


# ---------------------------------------------------------------------------
# Model id normalisation
# ---------------------------------------------------------------------------

_PROVIDER_ALIASES = {
    "vertex": "vertex_ai",
    "vertexai": "vertex_ai",
}

_KNOWN_PROVIDERS = {
    "openai",
    "azure",
    "anthropic",
    "ollama",
    "gemini",
    "google",
    "vertex_ai",
    "bedrock",
    "cohere",
    "mistral",
    "huggingface",
    "together_ai",
    "groq",
    "xai",
}


def normalize_model(model: str, api_base: str = "") -> str:
    """Map annotation model ids onto LiteLLM routing names.

    ``vertex/gemini-1.5-flash`` becomes ``vertex_ai/gemini-1.5-flash``.  With a
    local ``api_base`` (OpenAI-compatible server) an unqualified model id is
    forced onto the ``openai/`` provider.
    """
    name = model.strip()
    if "/" in name:
        provider, rest = name.split("/", 1)
        provider = _PROVIDER_ALIASES.get(provider.lower(), provider)
        name = f"{provider}/{rest}"
        if provider.lower() in _KNOWN_PROVIDERS:
            return name

    if not api_base:
        return name
    host = (urlparse(api_base.replace("://localhost", "://127.0.0.1")).hostname or "").lower()
    if host in {"127.0.0.1", "::1"}:
        return f"openai/{name}"
    return name


# ---------------------------------------------------------------------------
# DSPy adapter
# ---------------------------------------------------------------------------


def build_messages(prompt: str, parts: Sequence[Part]) -> List[Dict[str, Any]]:
    """Build one OpenAI-style user message: prompt text plus image/file parts."""
    if not parts:
        return [{"role": "user", "content": prompt}]
    content: List[Dict[str, Any]] = [{"type": "text", "text": prompt}]
    for part in parts:
        if part.type == "text":
            content.append({"type": "text", "text": part.text})
        else:
            content.append({"type": "image_url", "image_url": {"url": part.data_uri()}})
    return [{"role": "user", "content": content}]


def _output_text(output: Any) -> str:
    if isinstance(output, dict):
        return str(output.get("text") or "")
    return str(output)


class DspyInvoker:
    """Invoker backed by ``dspy.LM`` (LiteLLM under the hood).

    Args:
        api_key: Provider key passed to every LM.
        api_base: Optional OpenAI-compatible endpoint.
        temperature: Default temperature when the batch sets none.
        lm_factory: Override for ``dspy.LM`` construction (``(model, **kwargs) -> lm``).
    """

    def __init__(
        self,
        api_key: str = "",
        api_base: str = "",
        temperature: float = 0.0,
        lm_factory: Optional[Callable[..., Any]] = None,
    ) -> None:
        self.api_key = api_key
        self.api_base = api_base
        self.temperature = temperature
        self._lm_factory = lm_factory
        self._lms: Dict[Tuple[str, Tuple[Tuple[str, Any], ...]], Any] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: Any = None) -> "DspyInvoker":
        from .config import get_config

        cfg = config or get_config()
        return cls(api_key=cfg.api_key, api_base=cfg.api_base, temperature=cfg.lm_temperature)

    def _make_lm(self, model: str, kwargs: Dict[str, Any]) -> Any:
        if self._lm_factory is not None:
            return self._lm_factory(model, **kwargs)
        import dspy

        return dspy.LM(model, **kwargs)

    def lm_for(self, model: str, parameters: Optional[Mapping[str, str]] = None) -> Any:
        """Return the cached LM for *model* under *parameters*."""
        kwargs: Dict[str, Any] = {"temperature": self.temperature}
        kwargs.update(generation_kwargs(parameters))
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        routed = normalize_model(model, self.api_base)
        key = (routed, tuple(sorted(kwargs.items())))
        with self._lock:
            lm = self._lms.get(key)
            if lm is None:
                logger.debug(f"Creating LM for {routed}")
                lm = self._make_lm(routed, kwargs)
                self._lms[key] = lm
        return lm

    def generate(
        self,
        model: str,
        prompt: str,
        parts: Sequence[Part],
        *,
        parameters: Optional[Mapping[str, str]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> bytes:
        if cancel is not None and cancel.is_set():
            raise GenerationCancelled("cancelled before generation", model=model)

        lm = self.lm_for(model, parameters)
        try:
            outputs = lm(messages=build_messages(prompt, parts))
        except Exception as e:
            raise GenerationError(f"{model}: {e}", model=model) from e

        if cancel is not None and cancel.is_set():
            raise GenerationCancelled("cancelled during generation", model=model)
        if not outputs:
            raise GenerationError(f"{model}: empty response", model=model)
        return strip_harmony_tokens(_output_text(outputs[0])).encode("utf-8")


__all__ = [
    "Invoker",
    "DspyInvoker",
    "generation_kwargs",
    "build_messages",
    "normalize_model",
    "strip_harmony_tokens",
]
