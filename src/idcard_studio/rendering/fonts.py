"""
fonts.py

Font family name resolution for the renderer. Loading font files is not
handled here; the renderer only needs to know whether a family name will
resolve, and drops the attribute (falling back to the inherited font) when
it will not.
"""

import logging
from typing import Dict, Iterable, Optional

from reportlab.pdfbase import pdfmetrics

logger = logging.getLogger(__name__)

GENERIC_FAMILIES = {"serif", "sans-serif", "monospace", "cursive", "fantasy", "system-ui", "inherit"}

_BASE14_FONTS = {
    "Courier", "Courier-Bold", "Courier-Oblique", "Courier-BoldOblique",
    "Helvetica", "Helvetica-Bold", "Helvetica-Oblique", "Helvetica-BoldOblique",
    "Times-Roman", "Times-Bold", "Times-Italic", "Times-BoldItalic",
    "Symbol", "ZapfDingbats",
}


def normalize_font_name(name: str) -> str:
    return "".join(ch for ch in name.lower() if ch.isalnum())


class FontResolver:
    """
    Answers `resolve(name) -> bool` against a set of available family names.

    Matching ignores case, spaces and punctuation, so "Open Sans" matches
    "OpenSans" and "open-sans". Generic CSS families always resolve.
    A resolver built without a list resolves every name.
    """

    def __init__(self, available: Optional[Iterable[str]] = None):
        self._accept_all = available is None
        self._names: Dict[str, str] = {}
        for name in available or ():
            self._names.setdefault(normalize_font_name(name), name)

    @classmethod
    def from_reportlab(cls, extra: Optional[Iterable[str]] = None) -> "FontResolver":
        """Fonts registered with reportlab plus the PDF base-14 families."""
        names = set(pdfmetrics.getRegisteredFontNames()) | _BASE14_FONTS
        names.update(n.split("-")[0] for n in list(names))
        names.update(extra or ())
        return cls(sorted(names))

    def match(self, name: Optional[str]) -> Optional[str]:
        """The available family `name` refers to, or None."""
        if not name:
            return None
        if name.strip().lower() in GENERIC_FAMILIES:
            return name.strip().lower()
        if self._accept_all:
            return name
        return self._names.get(normalize_font_name(name))

    def resolve(self, name: Optional[str]) -> bool:
        return self.match(name) is not None
