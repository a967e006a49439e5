from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol, Sequence, Tuple

import pymupdf as fitz  # PyMuPDF

from .errors import FontResolutionDegraded


logger = logging.getLogger(__name__)

EMBEDDED_FONT_ALIAS = "ReportSigFont"


@dataclass(frozen=True)
class LoadedFont:
    """A font ready to be measured and drawn with.

    ``buffer`` holds the font file for embedding; built-in fonts have none
    and are referenced by ``alias`` directly.
    """

    alias: str
    font: fitz.Font
    buffer: Optional[bytes] = None
    source: str = ""

    @property
    def embedded(self) -> bool:
        return self.buffer is not None

    def text_length(self, text: str, fontsize: float) -> float:
        return self.font.text_length(text, fontsize=fontsize)


class FontSource(Protocol):
    name: str

    def load(self) -> LoadedFont: ...


class FileFontSource:
    """A full (non-subsetted) TrueType/OpenType file on disk."""

    def __init__(self, path: Path, alias: str = EMBEDDED_FONT_ALIAS) -> None:
        self.path = Path(path)
        self.alias = alias
        self.name = str(self.path)

    def load(self) -> LoadedFont:
        data = self.path.read_bytes()
        font = fitz.Font(fontbuffer=data)
        return LoadedFont(alias=self.alias, font=font, buffer=data, source=self.name)

    def __repr__(self) -> str:
        return f"FileFontSource({self.name!r})"


class BuiltinFontSource:
    """One of the Base-14 fonts MuPDF ships (Latin only)."""

    def __init__(self, fontname: str = "helv") -> None:
        self.fontname = fontname
        self.name = f"builtin:{fontname}"

    def load(self) -> LoadedFont:
        return LoadedFont(alias=self.fontname, font=fitz.Font(self.fontname), source=self.name)

    def __repr__(self) -> str:
        return f"BuiltinFontSource({self.fontname!r})"


class FontResolver:
    """Walks the configured font sources in order, then the built-in fallback."""

    def __init__(self, sources: Sequence[FontSource], fallback: FontSource) -> None:
        self.sources = tuple(sources)
        self.fallback = fallback

    def resolve(self) -> Tuple[Optional[LoadedFont], List[FontResolutionDegraded]]:
        degradations: List[FontResolutionDegraded] = []
        for source in self.sources:
            try:
                return source.load(), degradations
            except Exception as exc:
                logger.debug("Font source %s unavailable: %s", source.name, exc)

        degradations.append(
            FontResolutionDegraded(
                "builtin-fallback",
                f"none of {len(self.sources)} font source(s) loaded; "
                "non-Latin glyphs may not render",
            )
        )
        try:
            return self.fallback.load(), degradations
        except Exception as exc:
            degradations.append(
                FontResolutionDegraded("fallback-unavailable", f"{self.fallback.name}: {exc}")
            )
            return None, degradations

    def load_fallback(self) -> Optional[LoadedFont]:
        try:
            return self.fallback.load()
        except Exception:
            return None
