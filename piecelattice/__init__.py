"""Unigram and word-level subword segmentation over a piece lattice."""

__version__ = "0.1.0"
__all__ = ["freelist", "lattice", "unigram_model", "util", "word_model"]