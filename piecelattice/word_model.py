"""Whitespace word model: every space-delimited word is one piece."""

from __future__ import annotations

import logging
from typing import Iterable

from .unigram_model import (
    EncodeResult,
    NBestEncodeResult,
    SentencePiece,
    _as_text,
    _PieceVocabulary,
)

SPACE_SYMBOL = "\u2581"

_log = logging.getLogger(__name__)


def split_into_words(text: str) -> list[str]:
    """Split before every space symbol; each word keeps its leading space symbol."""
    words: list[list[str]] = []
    for ch in text:
        if not words or ch == SPACE_SYMBOL:
            words.append([ch])
        else:
            words[-1].append(ch)
    return ["".join(word) for word in words]


class WordModel(_PieceVocabulary):
    """Maps each word of normalized text straight to its vocabulary id."""

    is_nbest_encode_available = False
    is_sample_encode_available = False

    def __init__(self, pieces: Iterable[SentencePiece]) -> None:
        super().__init__(pieces)

    def piece_to_id(self, piece: str | bytes) -> int:
        return super().piece_to_id(piece)

    def encode(self, normalized: str | bytes) -> EncodeResult:
        text = _as_text(normalized)
        if not text:
            return []
        return [(word, self.piece_to_id(word)) for word in split_into_words(text)]

    def nbest_encode(self, normalized: str | bytes, nbest_size: int) -> NBestEncodeResult:
        """Word models have a single segmentation; no n-best list is produced."""
        text = _as_text(normalized)
        results: NBestEncodeResult = []
        if not self.is_nbest_encode_available:
            _log.error(
                "n-best encoding is not available for the word model "
                "(input of %d characters, nbest_size=%d)",
                len(text),
                nbest_size,
            )
        return results

    def sample_encode(self, normalized: str | bytes, theta: float) -> EncodeResult:
        """Word models have nothing to sample from; no segmentation is produced."""
        text = _as_text(normalized)
        results: EncodeResult = []
        if not self.is_sample_encode_available:
            _log.error(
                "sampling is not available for the word model "
                "(input of %d characters, theta=%s)",
                len(text),
                theta,
            )
        return results