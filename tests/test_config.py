# tests/test_config.py
"""Tests for UnstructConfig and ExtractOptions."""

from pathlib import Path

import pytest


class TestUnstructConfig:
    """Test UnstructConfig defaults and overrides."""

    def test_default_values(self, monkeypatch, tmp_path):
        from unstruct.config import UnstructConfig

        monkeypatch.chdir(tmp_path)
        cfg = UnstructConfig()
        assert cfg.model == ""
        assert cfg.max_retries == 0
        assert cfg.backoff == 0.5
        assert cfg.timeout is None
        assert cfg.flatten_groups is False
        assert cfg.log_level == "INFO"

    def test_env_override(self, monkeypatch, tmp_path):
        """Environment variables with UNSTRUCT_ prefix override defaults."""
        from unstruct.config import UnstructConfig

        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("UNSTRUCT_MODEL", "openai/gpt-4o")
        monkeypatch.setenv("UNSTRUCT_MAX_RETRIES", "4")
        monkeypatch.setenv("UNSTRUCT_FLATTEN_GROUPS", "true")
        cfg = UnstructConfig()
        assert cfg.model == "openai/gpt-4o"
        assert cfg.max_retries == 4
        assert cfg.flatten_groups is True

    def test_dotenv_file(self, monkeypatch, tmp_path):
        from unstruct.config import UnstructConfig

        monkeypatch.chdir(tmp_path)
        (tmp_path / ".env").write_text("UNSTRUCT_FALLBACK_PROMPT=generic\n", encoding="utf-8")
        assert UnstructConfig().fallback_prompt == "generic"

    def test_derived_paths(self):
        from unstruct.config import UnstructConfig

        cfg = UnstructConfig(home_dir=Path("/tmp/unstruct-home"))
        assert cfg.log_dir == Path("/tmp/unstruct-home/logs")


class TestExtractOptions:
    def test_from_config(self, monkeypatch, tmp_path):
        from unstruct.config import ExtractOptions, UnstructConfig

        monkeypatch.chdir(tmp_path)
        cfg = UnstructConfig(model="gemini-1.5-flash", max_retries=2, backoff=0.1)
        opts = ExtractOptions.from_config(cfg, max_retries=5)
        assert opts.model == "gemini-1.5-flash"
        assert opts.max_retries == 5
        assert opts.backoff == 0.1

    @pytest.mark.parametrize(
        "kwargs",
        [{"max_retries": -1}, {"backoff": -0.1}, {"timeout": 0}, {"max_concurrency": 0}],
    )
    def test_validation(self, kwargs):
        from pydantic import ValidationError

        from unstruct.config import ExtractOptions

        with pytest.raises(ValidationError):
            ExtractOptions(**kwargs)

    def test_group_shorthand(self):
        from unstruct.config import ExtractOptions, GroupDefinition

        opts = ExtractOptions(groups={"parties": ("party-prompt", "gpt-4o"), "plain": {"prompt": "p"}})
        assert opts.groups["parties"] == GroupDefinition(prompt="party-prompt", model="gpt-4o")
        assert opts.groups["plain"].model == ""

    def test_with_helpers_return_copies(self):
        from pydantic import BaseModel

        from unstruct.config import ExtractOptions

        class Person(BaseModel):
            age: int = 0

        base = ExtractOptions()
        opts = base.with_group("g", "prompt").with_field_model("gpt-4o", Person, "age")
        assert base.groups == {}
        assert opts.field_models == {"Person.age": "gpt-4o"}
        assert "g" in opts.groups

    def test_compile_key_ignores_dispatch_options(self):
        from unstruct.config import ExtractOptions

        assert ExtractOptions(max_retries=3).compile_key() == ExtractOptions(timeout=5).compile_key()
        assert ExtractOptions(flatten_groups=True).compile_key() != ExtractOptions().compile_key()
