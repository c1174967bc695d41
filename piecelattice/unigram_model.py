"""Splits text into scored vocabulary pieces by best-path search over a lattice."""

from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass
from typing import Iterable

from .lattice import Lattice, Node

logger = logging.getLogger(__name__)

UNK_PENALTY = 10.0
EPSILON = 1e-7
MAX_NBEST_SIZE = 1024
_FLT_MAX = 3.4028234663852886e38
_FLT_MIN = 1.1754943508222875e-38

EncodeResult = list[tuple[str, int]]
NBestEncodeResult = list[tuple[EncodeResult, float]]


class PieceType(enum.IntEnum):
    """Kind of a vocabulary entry."""

    NORMAL = 1
    UNKNOWN = 2
    CONTROL = 3
    USER_DEFINED = 4
    UNUSED = 5
    BYTE = 6


class EncoderVersion(enum.Enum):
    """Which Viterbi implementation ``encode`` uses."""

    OPTIMIZED = "optimized"
    ORIGINAL = "original"


@dataclass(frozen=True)
class SentencePiece:
    """One vocabulary entry: its text, log-probability score and kind."""

    piece: str
    score: float = 0.0
    type: PieceType = PieceType.NORMAL


_MATCHABLE_TYPES = (PieceType.NORMAL, PieceType.USER_DEFINED, PieceType.UNUSED)


def _as_text(value: str | bytes) -> str:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8")
    return value


class _PieceVocabulary:
    """Id lookup shared by the models: matchable pieces and reserved symbols."""

    def __init__(self, pieces: Iterable[SentencePiece]) -> None:
        self._pieces: tuple[SentencePiece, ...] = tuple(pieces)
        self._matchable: dict[str, int] = {}
        self._reserved: dict[str, int] = {}
        unk_id: int | None = None
        for piece_id, sp in enumerate(self._pieces):
            if not sp.piece:
                raise ValueError("piece must not be empty.")
            if sp.piece in self._matchable or sp.piece in self._reserved:
                raise ValueError(f"{sp.piece!r} is already defined.")
            if sp.type in _MATCHABLE_TYPES:
                self._matchable[sp.piece] = piece_id
            else:
                self._reserved[sp.piece] = piece_id
            if sp.type == PieceType.UNKNOWN:
                if unk_id is not None:
                    raise ValueError("unk is already defined.")
                unk_id = piece_id
        if unk_id is None:
            raise ValueError("unk is not defined.")
        self._unk_id = unk_id

    def pieces(self) -> tuple[SentencePiece, ...]:
        return self._pieces

    def piece_size(self) -> int:
        return len(self._pieces)

    def piece_to_id(self, piece: str | bytes) -> int:
        """Vocabulary id of ``piece``, or the unknown id when it is absent."""
        piece = _as_text(piece)
        reserved = self._reserved.get(piece)
        if reserved is not None:
            return reserved
        return self._matchable.get(piece, self._unk_id)

    def id_to_piece(self, piece_id: int) -> str:
        return self._pieces[piece_id].piece

    def get_score(self, piece_id: int) -> float:
        return self._pieces[piece_id].score

    def is_unknown(self, piece_id: int) -> bool:
        return self._pieces[piece_id].type == PieceType.UNKNOWN

    def is_control(self, piece_id: int) -> bool:
        return self._pieces[piece_id].type == PieceType.CONTROL

    def is_unused(self, piece_id: int) -> bool:
        return self._pieces[piece_id].type == PieceType.UNUSED

    def is_user_defined(self, piece_id: int) -> bool:
        return self._pieces[piece_id].type == PieceType.USER_DEFINED


@dataclass
class _BestPathNode:
    id: int = -1
    best_path_score: float = 0.0
    starts_at: int | None = None


def _log_inclusion_probability(x: float) -> float:
    y = math.exp(x)
    if x <= -10:
        # Series expansion of the log Gumbel survival function.
        return x - y / 2 + y**2 / 24 - y**4 / 2880
    return math.log(-math.expm1(-y))


def _to_result(nodes: Iterable[Node]) -> EncodeResult:
    return [(node.piece, node.id) for node in nodes]


class UnigramModel:
    """Segments text into the most probable sequence of vocabulary pieces."""

    def __init__(self, pieces: Iterable[SentencePiece]) -> None:
        self._vocab = _PieceVocabulary(pieces)
        self._encoder_version = EncoderVersion.OPTIMIZED

        self._min_score = _FLT_MAX
        self._max_score = _FLT_MIN
        for sp in self._vocab.pieces():
            if sp.type == PieceType.NORMAL:
                self._min_score = min(self._min_score, sp.score)
                self._max_score = max(self._max_score, sp.score)

        self._matchable = self._vocab._matchable
        self._unk_id = self._vocab._unk_id
        if not self._matchable:
            raise ValueError("no pieces are loaded.")
        self._prefixes = {
            piece[:end]
            for piece in self._matchable
            for end in range(1, len(piece) + 1)
        }

    def pieces(self) -> tuple[SentencePiece, ...]:
        """All vocabulary entries in id order."""
        return self._vocab.pieces()

    def min_score(self) -> float:
        """Lowest normal piece score; unknown pieces cost ``min_score() - 10``."""
        return self._min_score

    def max_score(self) -> float:
        """Highest normal piece score; it sets the bonus of user-defined pieces."""
        return self._max_score

    def set_encoder_version(self, version: EncoderVersion | str) -> None:
        self._encoder_version = EncoderVersion(version)

    def piece_size(self) -> int:
        return self._vocab.piece_size()

    def piece_to_id(self, piece: str | bytes) -> int:
        """Vocabulary id of ``piece``, or the unknown id when it is absent."""
        return self._vocab.piece_to_id(piece)

    def id_to_piece(self, piece_id: int) -> str:
        return self._vocab.id_to_piece(piece_id)

    def get_score(self, piece_id: int) -> float:
        return self._vocab.get_score(piece_id)

    def is_unknown(self, piece_id: int) -> bool:
        return self._vocab.is_unknown(piece_id)

    def is_control(self, piece_id: int) -> bool:
        return self._vocab.is_control(piece_id)

    def is_unused(self, piece_id: int) -> bool:
        return self._vocab.is_unused(piece_id)

    def is_user_defined(self, piece_id: int) -> bool:
        return self._vocab.is_user_defined(piece_id)

    def _piece_score(self, piece_id: int, length: int) -> float:
        if self.is_user_defined(piece_id):
            return length * self._max_score - 0.1
        return self.get_score(piece_id)

    def _unk_score(self) -> float:
        return self._min_score - UNK_PENALTY

    def populate_nodes(self, lattice: Lattice) -> None:
        """Insert every vocabulary match, plus unknown nodes where needed."""
        sentence = lattice.sentence()
        size = lattice.size()
        unk_score = self._unk_score()
        for begin in range(size):
            has_single_node = False
            for end in range(begin + 1, size + 1):
                key = sentence[begin:end]
                if key not in self._prefixes:
                    break
                piece_id = self._matchable.get(key)
                if piece_id is None or self.is_unused(piece_id):
                    continue
                node = lattice.insert(begin, end - begin)
                node.id = piece_id
                node.score = self._piece_score(piece_id, node.length)
                if node.length == 1:
                    has_single_node = True
            if not has_single_node:
                node = lattice.insert(begin, 1)
                node.id = self._unk_id
                node.score = unk_score

    def _build_lattice(self, text: str) -> Lattice:
        lattice = Lattice()
        lattice.set_sentence(text)
        self.populate_nodes(lattice)
        return lattice

    def encode(self, normalized: str | bytes) -> EncodeResult:
        """Best segmentation as ``(piece, id)`` pairs."""
        text = _as_text(normalized)
        if self._encoder_version == EncoderVersion.OPTIMIZED:
            return self._encode_optimized(text)
        if not text:
            return []
        return _to_result(self._build_lattice(text).viterbi().nodes)

    def _encode_optimized(self, text: str) -> EncodeResult:
        # Keeps only the best path ending at each position instead of a lattice.
        if not text:
            return []
        size = len(text)
        unk_score = self._unk_score()
        best = [_BestPathNode() for _ in range(size + 1)]

        def relax(end: int, start: int, piece_id: int, score: float) -> None:
            target = best[end]
            if target.starts_at is None or score > target.best_path_score:
                target.best_path_score = score
                target.starts_at = start
                target.id = piece_id

        for start in range(size):
            till_here = best[start].best_path_score
            has_single_node = False
            for end in range(start + 1, size + 1):
                key = text[start:end]
                if key not in self._prefixes:
                    break
                piece_id = self._matchable.get(key)
                if piece_id is None or self.is_unused(piece_id):
                    continue
                score = self._piece_score(piece_id, len(key.encode("utf-8")))
                relax(end, start, piece_id, score + till_here)
                if end - start == 1:
                    has_single_node = True
            if not has_single_node:
                relax(start + 1, start, self._unk_id, unk_score + till_here)

        results: EncodeResult = []
        end = size
        while end > 0:
            node = best[end]
            start = node.starts_at if node.starts_at is not None else end - 1
            results.append((text[start:end], node.id))
            end = start
        results.reverse()
        return results

    def nbest_encode(self, normalized: str | bytes, nbest_size: int) -> NBestEncodeResult:
        """Up to ``nbest_size`` (clamped to 1..1024) best segmentations with scores."""
        text = _as_text(normalized)
        if not text:
            return [([], 0.0)]
        nbest_size = max(1, min(nbest_size, MAX_NBEST_SIZE))
        lattice = self._build_lattice(text)
        return [
            (_to_result(path.nodes), path.score)
            for path in lattice.nbest(nbest_size, False, 0.0)
        ]

    def sample_encode(self, normalized: str | bytes, theta: float) -> EncodeResult:
        """One segmentation drawn with probability proportional to exp(theta * score)."""
        text = _as_text(normalized)
        if not text:
            return []
        return _to_result(self._build_lattice(text).sample(theta))

    def sample_encode_and_score(
        self,
        normalized: str | bytes,
        theta: float,
        samples: int,
        wor: bool,
        include_best: bool,
    ) -> NBestEncodeResult:
        """Draw ``samples`` segmentations with their log scores.

        Without replacement (``wor``) the scores are log inclusion
        probabilities; with ``include_best`` the Viterbi path comes first
        with score 0.
        """
        text = _as_text(normalized)
        if not text:
            return []
        if include_best and not wor:
            raise ValueError("include_best not supported for wor false")

        lattice = self._build_lattice(text)
        alpha = lattice.forward_algorithm(theta)
        marginal = alpha[lattice.eos_node().node_id]

        results: NBestEncodeResult = []
        if include_best:
            results.append((_to_result(lattice.viterbi().nodes), 0.0))

        if not wor:
            while len(results) < samples:
                nodes = lattice.sample(theta)
                score = sum(theta * node.score for node in nodes)
                results.append((_to_result(nodes), score - marginal))
            return results

        # One extra sample: its perturbed score sets the inclusion threshold.
        nbest_samples = lattice.nbest(samples + 1, True, theta)
        if include_best:
            best_nodes = lattice.viterbi().nodes
            paths = [path.nodes for path in nbest_samples]
            if best_nodes in paths:
                logger.info("removing best path from samples")
                del nbest_samples[paths.index(best_nodes)]
            else:
                nbest_samples.pop()
        kappa = nbest_samples.pop().score
        for path in nbest_samples:
            score = sum(theta * node.score for node in path.nodes)
            results.append((_to_result(path.nodes), score - marginal))

        return [
            (result, score if score == 0.0 else _log_inclusion_probability(score - kappa))
            for result, score in results
        ]

    def calculate_entropy(self, normalized: str | bytes, theta: float) -> float:
        """Entropy of the segmentation distribution of ``normalized``."""
        return self._build_lattice(_as_text(normalized)).calculate_entropy(theta)

    def verify_outputs_equivalent(self, expected: str, actual: str) -> bool:
        """Whether two space-separated piece sequences score the same."""

        def total_score(output: str) -> float:
            total = 0.0
            for piece in output.split(" "):
                piece_id = self.piece_to_id(piece)
                if piece_id == self._unk_id:
                    total += self._unk_score()
                else:
                    total += self._piece_score(piece_id, len(piece.encode("utf-8")))
            return total

        expected_score = total_score(expected)
        actual_score = total_score(actual)
        if abs(expected_score - actual_score) > EPSILON:
            logger.warning(
                "Two piece sequences are not equivalent! Left: %s, Score: %s."
                " Right: %s, Score: %s.",
                expected,
                expected_score,
                actual,
                actual_score,
            )
            return False
        return True