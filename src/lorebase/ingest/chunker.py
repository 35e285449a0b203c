"""Boundary-aware fixed-window chunker.

Windows of ``size`` characters are cut at the last paragraph break
(``"\\n\\n"``) or sentence end (``". "``) inside the window when that break
lies in the second half of the window; otherwise the cut is made at exactly
``size``. The next window starts ``overlap`` characters before the cut.
Fragments shorter than ``min_chars`` after stripping are dropped.
"""

from __future__ import annotations

from lorebase.ingest.base import BaseChunker

_BREAKS = ("\n\n", ". ")


def chunk_text(text: str, size: int, overlap: int, min_chars: int = 100) -> list[str]:
    """Split *text* into overlapping, boundary-aware fragments.

    Args:
        text: Full text to split.
        size: Maximum fragment length in characters.
        overlap: Characters the next window steps back from the cut (< size).
        min_chars: Minimum stripped length of a kept fragment.

    Returns:
        Stripped fragments in document order.

    Raises:
        ValueError: If ``size < 1`` or ``overlap`` is not in ``[0, size)``.
    """
    if size < 1:
        raise ValueError("size must be >= 1")
    if not 0 <= overlap < size:
        raise ValueError("overlap must be >= 0 and smaller than size")

    fragments: list[str] = []
    length = len(text)
    start = 0

    while start < length:
        end = min(start + size, length)
        window = text[start:end]

        if end < length:
            cut = max(window.rfind(marker) for marker in _BREAKS)
            if cut >= size * 0.5:
                # Keep the first character of the break ("\n" or ".")
                window = window[: cut + 1]
                next_start = start + cut + 1
            else:
                next_start = end
        else:
            next_start = end

        fragment = window.strip()
        if fragment and len(fragment) >= min_chars:
            fragments.append(fragment)

        if next_start < length:
            # Step back for overlap but always move past the previous start
            next_start = max(start + 1, next_start - overlap)
        start = next_start

    return fragments


class BoundaryChunker(BaseChunker):
    """Chunker for documentation files.

    Default: 1500 characters / 200 overlap / 100 minimum.
    """

    def split(self, text: str) -> list[str]:
        if not text.strip():
            return []
        return chunk_text(text, self.chunk_size, self.overlap, self.min_chars)
