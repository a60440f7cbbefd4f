# tests/test_parts.py
"""Tests for source material parts."""

import pytest


class TestNormalizeAssets:
    def test_strings_become_text_parts(self):
        from unstruct.parts import Part, normalize_assets

        parts = normalize_assets(["John, 25", Part.from_image(b"\x89PNG")])
        assert parts[0] == Part.from_text("John, 25")
        assert parts[1].type == "image"

    def test_single_asset(self):
        from unstruct.parts import normalize_assets

        assert len(normalize_assets("hello")) == 1

    def test_empty_parts_are_dropped(self):
        from unstruct.parts import Part, normalize_assets

        parts = normalize_assets(["", Part.from_image(b""), "doc"])
        assert [p.text for p in parts] == ["doc"]

    @pytest.mark.parametrize("assets", [None, [], [""]])
    def test_nothing_usable(self, assets):
        from unstruct.errors import EmptyInputError
        from unstruct.parts import normalize_assets

        with pytest.raises(EmptyInputError):
            normalize_assets(assets)

    def test_unsupported_type(self):
        from unstruct.parts import normalize_assets

        with pytest.raises(TypeError):
            normalize_assets([42])


class TestDocumentSplit:
    def test_first_text_is_document(self):
        from unstruct.parts import Part, content_parts, document_text

        image = Part.from_image(b"abc", "image/jpeg")
        parts = [image, Part.from_text("doc"), Part.from_text("extra")]
        assert document_text(parts) == "doc"
        assert content_parts(parts) == [image, Part.from_text("extra")]

    def test_no_text(self):
        from unstruct.parts import Part, content_parts, document_text

        parts = [Part.from_file("gs://bucket/a.pdf", "application/pdf")]
        assert document_text(parts) == ""
        assert content_parts(parts) == parts


class TestDataUri:
    def test_inline_bytes(self):
        from unstruct.parts import Part

        assert Part.from_image(b"abc", "image/png").data_uri() == "data:image/png;base64,YWJj"
        assert Part.from_image(b"abc", "").data_uri().startswith("data:application/octet-stream;")

    def test_file_uri_passthrough(self):
        from unstruct.parts import Part

        assert Part.from_file("gs://bucket/a.pdf").data_uri() == "gs://bucket/a.pdf"
