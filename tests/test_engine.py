# tests/test_engine.py
"""Tests for the extraction engine."""

import threading
from typing import Annotated, List

import pytest
from pydantic import BaseModel, Field

from unstruct.annotations import Unstruct


class Person(BaseModel):
    Name: Annotated[str, Unstruct("basic")] = ""
    Age: Annotated[int, Unstruct("basic")] = 0
    City: Annotated[str, Unstruct("basic")] = ""


class Address(BaseModel):
    street: str = ""
    city: str = ""


class Employee(BaseModel):
    name: Annotated[str, Unstruct("basic")] = ""
    email: Annotated[str, Unstruct("contact,gpt-4o-mini")] = ""
    address: Annotated[Address, Unstruct("address")] = Field(default_factory=Address)


class Unprompted(BaseModel):
    note: str = ""


def _prompts():
    from unstruct.providers import SimplePromptProvider

    return SimplePromptProvider(
        {
            "basic": "Extract {keys}.",
            "contact": "Extract contact details {keys}.",
            "address": "Extract the address {keys}.",
            "fallback": "Extract anything: {keys}.",
        }
    )


def _options(**kwargs):
    from unstruct.config import ExtractOptions

    kwargs.setdefault("model", "M")
    return ExtractOptions(**kwargs)


class TestExtract:
    def test_scenario_a_single_call(self):
        from unstruct.engine import Unstructor
        from unstruct.testing import RecordingInvoker

        invoker = RecordingInvoker(lambda call: {"Name": "John", "Age": 25, "City": "NYC"})
        person = Unstructor(Person, invoker, _prompts()).extract(["John, 25, lives in NYC"], _options())

        assert person == Person(Name="John", Age=25, City="NYC")
        assert invoker.call_count == 1
        call = invoker.calls[0]
        assert call.model == "M"
        assert call.prompt.startswith("Extract Name,Age,City.")
        assert "<<DOC>>\nJohn, 25, lives in NYC\n<<END>>" in call.prompt

    def test_nested_batches_and_model_routing(self):
        from unstruct.engine import Unstructor
        from unstruct.testing import RecordingInvoker

        def handler(call):
            if "contact" in call.prompt:
                return {"email": "ann@example.com"}
            if "address" in call.prompt:
                return '```json\n{"address": {"street": "Main St", "city": "Berlin"}}\n```'
            return {"name": "Ann"}

        invoker = RecordingInvoker(handler)
        employee = Unstructor(Employee, invoker, _prompts()).extract("Ann ...", _options())

        assert employee.name == "Ann"
        assert employee.email == "ann@example.com"
        assert employee.address == Address(street="Main St", city="Berlin")
        assert invoker.call_count == 3
        assert len(invoker.calls_for("gpt-4o-mini")) == 1
        assert len(invoker.calls_for("M")) == 2

    def test_non_text_parts_are_forwarded(self):
        from unstruct.engine import Unstructor
        from unstruct.parts import Part
        from unstruct.testing import RecordingInvoker

        image = Part.from_image(b"\x89PNG", "image/png")
        invoker = RecordingInvoker(lambda call: {})
        Unstructor(Person, invoker, _prompts()).extract(["text", image], _options())
        assert invoker.calls[0].parts == (image,)

    def test_keyword_overrides(self):
        from unstruct.engine import Unstructor
        from unstruct.testing import RecordingInvoker

        invoker = RecordingInvoker(lambda call: {})
        Unstructor(Person, invoker, _prompts()).extract(["x"], _options(), model="other")
        assert invoker.calls[0].model == "other"

    def test_extract_text(self):
        from unstruct.engine import Unstructor
        from unstruct.testing import RecordingInvoker

        invoker = RecordingInvoker(lambda call: {"City": "Paris"})
        person = Unstructor(Person, invoker, _prompts()).extract_text("in Paris", _options())
        assert person.City == "Paris"

    def test_generation_parameters_reach_the_invoker(self):
        from unstruct.engine import Unstructor
        from unstruct.testing import RecordingInvoker

        class Tuned(BaseModel):
            summary: Annotated[str, Unstruct("prompt/basic/model/gpt-4o?temperature=0.3")] = ""

        invoker = RecordingInvoker(lambda call: {"summary": "ok"})
        Unstructor(Tuned, invoker, _prompts()).extract(["x"], _options())
        assert invoker.calls[0].parameters == {"temperature": "0.3"}
        assert invoker.calls[0].model == "gpt-4o"

    def test_fallback_prompt(self):
        from unstruct.engine import Unstructor
        from unstruct.testing import RecordingInvoker

        invoker = RecordingInvoker(lambda call: {"note": "hi"})
        result = Unstructor(Unprompted, invoker, _prompts()).extract(["x"], _options(fallback_prompt="fallback"))
        assert result.note == "hi"
        assert invoker.calls[0].prompt.startswith("Extract anything: note.")


class TestExtractErrors:
    def test_empty_input(self):
        from unstruct.engine import Unstructor
        from unstruct.errors import EmptyInputError
        from unstruct.testing import RecordingInvoker

        with pytest.raises(EmptyInputError):
            Unstructor(Person, RecordingInvoker(), _prompts()).extract([], _options())
        with pytest.raises(EmptyInputError):
            Unstructor(Person, RecordingInvoker(), _prompts()).extract([""], _options())

    def test_model_unspecified(self):
        from unstruct.engine import Unstructor
        from unstruct.errors import ModelUnspecifiedError
        from unstruct.testing import RecordingInvoker

        invoker = RecordingInvoker()
        with pytest.raises(ModelUnspecifiedError):
            Unstructor(Person, invoker, _prompts()).extract(["x"], _options(model=""))
        assert invoker.call_count == 0

    def test_unresolved_prompt_names_fields(self):
        from unstruct.engine import Unstructor
        from unstruct.errors import UnresolvedPromptError
        from unstruct.testing import RecordingInvoker

        invoker = RecordingInvoker()
        with pytest.raises(UnresolvedPromptError) as exc_info:
            Unstructor(Unprompted, invoker, _prompts()).extract(["x"], _options(max_retries=3))
        assert exc_info.value.fields == ("note",)
        assert invoker.call_count == 0

    def test_unknown_prompt_label(self):
        from unstruct.engine import Unstructor
        from unstruct.errors import UnresolvedPromptError
        from unstruct.testing import RecordingInvoker

        class Missing(BaseModel):
            a: Annotated[str, Unstruct("does-not-exist")] = ""

        with pytest.raises(UnresolvedPromptError):
            Unstructor(Missing, RecordingInvoker(), _prompts()).extract(["x"], _options())

    def test_retry_then_succeed(self):
        from unstruct.engine import Unstructor
        from unstruct.errors import GenerationError
        from unstruct.testing import RecordingInvoker

        attempts = []

        def handler(call):
            attempts.append(1)
            if len(attempts) < 3:
                raise GenerationError("transient")
            return {"Name": "John"}

        invoker = RecordingInvoker(handler)
        person = Unstructor(Person, invoker, _prompts()).extract(["x"], _options(max_retries=3, backoff=0.01))
        assert person.Name == "John"
        assert invoker.call_count == 3

    def test_one_failing_batch_fails_the_whole_call(self):
        from unstruct.engine import Unstructor
        from unstruct.errors import GenerationError
        from unstruct.testing import RecordingInvoker

        def handler(call):
            if call.model == "gpt-4o-mini":
                raise RuntimeError("provider down")
            return {"name": "Ann"}

        invoker = RecordingInvoker(handler)
        with pytest.raises(GenerationError) as exc_info:
            Unstructor(Employee, invoker, _prompts()).extract(["x"], _options(max_retries=1, backoff=0.001))
        assert exc_info.value.model == "gpt-4o-mini"
        assert len(invoker.calls_for("gpt-4o-mini")) == 2

    def test_failure_cancels_in_flight_batches(self):
        from unstruct.engine import Unstructor
        from unstruct.errors import GenerationError
        from unstruct.testing import RecordingInvoker

        cancelled = threading.Event()

        class SlowInvoker(RecordingInvoker):
            def generate(self, model, prompt, parts, *, parameters=None, cancel=None):
                if model == "gpt-4o-mini":
                    raise GenerationError("fatal", model=model)
                if cancel is not None and cancel.wait(5):
                    cancelled.set()
                    from unstruct.errors import GenerationCancelled

                    raise GenerationCancelled("stopped", model=model)
                return b"{}"

        with pytest.raises(GenerationError) as exc_info:
            Unstructor(Employee, SlowInvoker(), _prompts()).extract(["x"], _options())
        assert str(exc_info.value) == "fatal"
        assert cancelled.wait(2)

    def test_failed_extract_returns_after_every_batch_finished(self):
        import time

        from unstruct.engine import Unstructor
        from unstruct.errors import GenerationError
        from unstruct.testing import RecordingInvoker

        before = set(threading.enumerate())
        finished = []
        lock = threading.Lock()

        class Busy(RecordingInvoker):
            def generate(self, model, prompt, parts, *, parameters=None, cancel=None):
                if model == "gpt-4o-mini":
                    time.sleep(0.05)
                    raise GenerationError("bad batch", model=model)
                time.sleep(0.3)
                with lock:
                    finished.append(model)
                return b"{}"

        with pytest.raises(GenerationError, match="bad batch"):
            Unstructor(Employee, Busy(), _prompts()).extract(["x"], _options())
        with lock:
            assert len(finished) == 2
        alive = [
            t.name for t in threading.enumerate()
            if t not in before and t.name.startswith("unstruct_") and t.is_alive()
        ]
        assert alive == []

    def test_timeout(self):
        from unstruct.engine import Unstructor
        from unstruct.errors import ExtractionTimeoutError
        from unstruct.testing import RecordingInvoker

        class Hanging(RecordingInvoker):
            def generate(self, model, prompt, parts, *, parameters=None, cancel=None):
                cancel.wait(5)
                return b"{}"

        with pytest.raises(ExtractionTimeoutError):
            Unstructor(Person, Hanging(), _prompts()).extract(["x"], _options(timeout=0.1))

    def test_merge_error_surfaces(self):
        from unstruct.engine import Unstructor
        from unstruct.errors import MergeError
        from unstruct.testing import RecordingInvoker

        invoker = RecordingInvoker(lambda call: {"Age": "not a number"})
        with pytest.raises(MergeError):
            Unstructor(Person, invoker, _prompts()).extract(["x"], _options())


class TestDryRun:
    def test_dry_run_does_not_call_invoker(self):
        from unstruct.engine import Unstructor
        from unstruct.plan import estimate_tokens_from_text
        from unstruct.testing import RecordingInvoker

        invoker = RecordingInvoker()
        u = Unstructor(Person, invoker, _prompts())
        stats = u.dry_run(["John, 25, NYC"], _options())

        assert invoker.call_count == 0
        assert stats.prompt_calls == 1
        assert stats.model_calls == {"M": 1}
        assert stats.fields_extracted == 3
        prompt = _prompts().get_prompt("basic", 1, ["Name", "Age", "City"], "John, 25, NYC")
        assert stats.total_input_tokens == estimate_tokens_from_text(prompt)
        # 10 + 2*3 + name(15) + age(5) + city(default 20)
        assert stats.total_output_tokens == 56

    def test_dry_run_falls_back_to_generic_instruction(self):
        from unstruct.engine import Unstructor
        from unstruct.testing import RecordingInvoker

        stats = Unstructor(Unprompted, RecordingInvoker(), _prompts()).dry_run(["x"], _options(model=""))
        assert stats.prompt_calls == 1
        assert stats.group_details[0].model == "gpt-3.5-turbo"
        assert stats.total_input_tokens > 0

    def test_explain_renders_outline(self):
        from unstruct.engine import Unstructor
        from unstruct.testing import RecordingInvoker

        text = Unstructor(Person, RecordingInvoker(), _prompts()).explain(["x"], _options(model="gpt-4o"))
        assert text.startswith("Unstructor Execution Plan")
        assert 'PromptCall "basic"' in text
        assert "model=gpt-4o" in text
        assert "$" in text
