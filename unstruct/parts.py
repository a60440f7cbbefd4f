"""Content items that make up the source material for an extraction."""

from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Iterable, List, Literal, Optional, Sequence, Union

from .errors import EmptyInputError

PartType = Literal["text", "image", "file"]


@dataclass(frozen=True)
class Part:
    """One piece of source material: text, inline image bytes, or a file reference."""

    type: PartType
    text: str = ""
    data: bytes = b""
    mime_type: str = ""
    uri: str = ""

    @classmethod
    def from_text(cls, text: str) -> "Part":
        return cls(type="text", text=text)

    @classmethod
    def from_image(cls, data: bytes, mime_type: str = "image/png") -> "Part":
        return cls(type="image", data=data, mime_type=mime_type)

    @classmethod
    def from_file(cls, uri: str, mime_type: str = "") -> "Part":
        return cls(type="file", uri=uri, mime_type=mime_type)

    @property
    def is_empty(self) -> bool:
        if self.type == "text":
            return not self.text
        if self.type == "image":
            return not self.data
        return not self.uri

    def data_uri(self) -> str:
        """Return inline bytes as a ``data:`` URI, or the file URI for file parts."""
        if self.type == "file":
            return self.uri
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type or 'application/octet-stream'};base64,{encoded}"


Asset = Union[Part, str]


def normalize_assets(assets: Optional[Iterable[Asset]]) -> List[Part]:
    """Turn strings into text parts and drop empty parts.

    Raises
    ------
    EmptyInputError
        If nothing usable remains.
    """
    if isinstance(assets, (str, Part)):
        assets = [assets]
    parts: List[Part] = []
    for item in assets or ():
        part = Part.from_text(item) if isinstance(item, str) else item
        if not isinstance(part, Part):
            raise TypeError(f"unsupported asset type: {type(item).__name__}")
        if not part.is_empty:
            parts.append(part)
    if not parts:
        raise EmptyInputError("no source material provided")
    return parts


def document_text(parts: Sequence[Part]) -> str:
    """Text handed to the prompt resolver: the first text part, or ``""``."""
    for part in parts:
        if part.type == "text":
            return part.text
    return ""


def content_parts(parts: Sequence[Part]) -> List[Part]:
    """Everything except the text handed to the resolver, forwarded to the generation capability."""
    out: List[Part] = []
    seen_document = False
    for part in parts:
        if part.type == "text" and not seen_document:
            seen_document = True
            continue
        out.append(part)
    return out


__all__ = ["Part", "PartType", "Asset", "normalize_assets", "document_text", "content_parts"]
