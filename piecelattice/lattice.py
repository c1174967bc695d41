"""Segmentation lattice with Viterbi, forward-backward, n-best and sampling."""

from __future__ import annotations

import heapq
import itertools
import logging
import math
from dataclasses import dataclass, field
from typing import MutableSequence, NamedTuple

from .freelist import FreeList
from .util import get_random_generator

logger = logging.getLogger(__name__)

PREALLOCATE_NODE_SIZE = 1024
_MINUS_LOG_EPSILON = 50.0
_GUMBEL_EPSILON = 1e-7
_MAX_AGENDA_SIZE = 100000
_MIN_AGENDA_SIZE = 512


def log_sum_exp(x: float, y: float, init_mode: bool) -> float:
    """Return log(exp(x) + exp(y)), or ``y`` alone when ``init_mode`` is set."""
    if init_mode:
        return y
    vmin, vmax = min(x, y), max(x, y)
    if vmax > vmin + _MINUS_LOG_EPSILON:
        return vmax
    return vmax + math.log(math.exp(vmin - vmax) + 1.0)


def gumbel() -> float:
    """Draw a sample from the standard Gumbel distribution."""
    u = get_random_generator().random()
    return -math.log(-math.log(u + _GUMBEL_EPSILON))


def _log1m_exp(x: float) -> float:
    """log(1 - exp(x)) for x <= 0, giving -inf where exp(x) reaches 1."""
    t = math.exp(x)
    if t >= 1.0:
        return -math.inf
    return math.log1p(-t)


@dataclass(eq=False)
class Node:
    """One candidate piece in the lattice."""

    piece: str = ""
    pos: int = 0
    length: int = 0
    node_id: int = 0
    id: int = 0
    score: float = 0.0
    backtrace_score: float = 0.0
    prev: Node | None = field(default=None, repr=False)


class ScoredPath(NamedTuple):
    """A path through the lattice (BOS and EOS excluded) and its score."""

    nodes: list[Node]
    score: float


@dataclass(eq=False, slots=True)
class _Hypothesis:
    node: Node
    next: _Hypothesis | None
    fx: float
    gx: float


class Lattice:
    """Search space of all segmentations of one sentence.

    Positions are character positions; ``begin_nodes(pos)`` are the nodes
    starting at ``pos`` and ``end_nodes(pos)`` the nodes ending there.
    """

    def __init__(self) -> None:
        self._allocator: FreeList[Node] = FreeList(PREALLOCATE_NODE_SIZE, Node)
        self._sentence = ""
        self._size = 0
        self._begin_nodes: list[list[Node]] = []
        self._end_nodes: list[list[Node]] = []

    # Accessors

    def bos_node(self) -> Node:
        return self._end_nodes[0][0]

    def eos_node(self) -> Node:
        return self._begin_nodes[self._size][0]

    def begin_nodes(self, pos: int) -> list[Node]:
        return self._begin_nodes[pos]

    def end_nodes(self, pos: int) -> list[Node]:
        return self._end_nodes[pos]

    def size(self) -> int:
        """Length of the sentence in characters."""
        return self._size

    def utf8_size(self) -> int:
        """Length of the sentence in UTF-8 bytes."""
        return len(self._sentence.encode("utf-8"))

    def sentence(self) -> str:
        return self._sentence

    def surface(self, pos: int) -> str:
        """The sentence from character position ``pos`` onward."""
        if not 0 <= pos <= self._size:
            raise IndexError(f"position {pos} outside the sentence")
        return self._sentence[pos:]

    # Construction

    def _new_node(self) -> Node:
        node = self._allocator.allocate()
        node.node_id = len(self._allocator) - 1
        return node

    def clear(self) -> None:
        self._begin_nodes = []
        self._end_nodes = []
        self._sentence = ""
        self._size = 0
        self._allocator.free()

    def set_sentence(self, sentence: str | bytes) -> None:
        """Reset the lattice to hold only BOS and EOS for ``sentence``."""
        self.clear()
        if isinstance(sentence, (bytes, bytearray)):
            sentence = bytes(sentence).decode("utf-8")
        self._sentence = sentence
        self._size = len(sentence)
        self._begin_nodes = [[] for _ in range(self._size + 1)]
        self._end_nodes = [[] for _ in range(self._size + 1)]

        bos = self._new_node()
        bos.id = -1
        bos.pos = 0
        self._end_nodes[0].append(bos)

        eos = self._new_node()
        eos.id = -1
        eos.pos = self._size
        self._begin_nodes[self._size].append(eos)

    def insert(self, pos: int, length: int) -> Node:
        """Add a node covering ``length`` characters from ``pos``.

        The caller sets the node's ``score`` and ``id``.
        """
        if pos < 0 or length < 0 or pos + length > self._size:
            raise IndexError(f"span ({pos}, {length}) outside the sentence")
        node = self._new_node()
        node.pos = pos
        node.length = length
        node.piece = self._sentence[pos : pos + length]
        self._begin_nodes[pos].append(node)
        self._end_nodes[pos + length].append(node)
        return node

    # Search

    def viterbi(self) -> ScoredPath:
        """Best path; an empty path with score 0 when the lattice is incomplete."""
        for pos in range(self._size + 1):
            for rnode in self._begin_nodes[pos]:
                rnode.prev = None
                best_score = 0.0
                best_node: Node | None = None
                for lnode in self._end_nodes[pos]:
                    score = lnode.backtrace_score + rnode.score
                    if best_node is None or score > best_score:
                        best_node = lnode
                        best_score = score
                if best_node is None:
                    logger.error("Failed to find the best path in Viterbi.")
                    return ScoredPath([], 0.0)
                rnode.prev = best_node
                rnode.backtrace_score = best_score

        eos = self.eos_node()
        results: list[Node] = []
        node = eos.prev
        while node is not None and node.prev is not None:
            results.append(node)
            node = node.prev
        results.reverse()
        return ScoredPath(results, eos.backtrace_score)

    def forward_algorithm(self, theta: float) -> list[float]:
        """Accumulated log probabilities up to the start of each node, by node_id."""
        alpha = [0.0] * len(self._allocator)
        for pos in range(self._size + 1):
            lnodes = self._end_nodes[pos]
            for rnode in self._begin_nodes[pos]:
                for lnode in lnodes:
                    alpha[rnode.node_id] = log_sum_exp(
                        alpha[rnode.node_id],
                        theta * lnode.score + alpha[lnode.node_id],
                        lnode is lnodes[0],
                    )
        return alpha

    def backward_algorithm(self, theta: float) -> list[float]:
        """Accumulated log probabilities from the end of each node, by node_id."""
        beta = [0.0] * len(self._allocator)
        for pos in range(self._size, -1, -1):
            rnodes = self._begin_nodes[pos]
            for lnode in self._end_nodes[pos]:
                for rnode in rnodes:
                    beta[lnode.node_id] = log_sum_exp(
                        beta[lnode.node_id],
                        rnode.score + beta[rnode.node_id],
                        rnode is rnodes[0],
                    )
        return beta

    def populate_marginal(
        self, freq: float, expected: MutableSequence[float] | None
    ) -> float:
        """Add ``freq`` times each node's marginal to ``expected[node.id]``.

        Returns the sentence log-likelihood scaled by ``freq``.
        """
        if expected is None:
            return 0.0
        alpha = self.forward_algorithm(1.0)
        beta = self.backward_algorithm(1.0)
        z = alpha[self.eos_node().node_id]
        for pos in range(self._size):
            for node in self._begin_nodes[pos]:
                if node.id >= 0:
                    expected[node.id] += freq * math.exp(
                        alpha[node.node_id] + node.score + beta[node.node_id] - z
                    )
        return freq * z

    def calculate_entropy(self, theta: float) -> float:
        """Entropy of the path distribution under smoothing ``theta``."""
        alpha = self.forward_algorithm(theta)
        h = [0.0] * len(self._allocator)
        for pos in range(self._size + 1):
            for rnode in self._begin_nodes[pos]:
                for lnode in self._end_nodes[pos]:
                    transition = (
                        theta * lnode.score + alpha[lnode.node_id] - alpha[rnode.node_id]
                    )
                    h[rnode.node_id] += math.exp(transition) * (
                        h[lnode.node_id] + transition
                    )
        return -h[self.eos_node().node_id]

    def nbest(
        self, nbest_size: int, sample: bool = False, theta: float = 0.0
    ) -> list[ScoredPath]:
        """Enumerate the best paths with A* search.

        With ``sample`` set, paths are drawn without replacement using
        perturbed (Gumbel) scores instead.
        """
        if nbest_size < 1:
            logger.warning("nbest_size >= 1. Returns empty result.")
            return []
        if nbest_size == 1 and not sample:
            return [self.viterbi()]

        counter = itertools.count()
        agenda: list[tuple[float, int, _Hypothesis]] = []

        def push(hyp: _Hypothesis) -> None:
            heapq.heappush(agenda, (-hyp.fx, next(counter), hyp))

        results: list[ScoredPath] = []
        eos = _Hypothesis(node=self.eos_node(), next=None, fx=0.0, gx=0.0)
        if sample:
            alpha = self.forward_algorithm(theta)
            eos.fx = gumbel()
        else:
            alpha = [0.0] * len(self._allocator)
            self.viterbi()
            eos.fx = eos.node.backtrace_score
        push(eos)

        bos_node = self.bos_node()
        while agenda:
            _, _, top = heapq.heappop(agenda)
            node = top.node

            if node is bos_node:
                path: list[Node] = []
                hyp = top.next
                while hyp is not None and hyp.next is not None:
                    path.append(hyp.node)
                    hyp = hyp.next
                results.append(ScoredPath(path, top.fx))
                if len(results) == nbest_size:
                    break
                continue

            lnodes = self._end_nodes[node.pos]
            if sample:
                z = alpha[node.node_id]
                probs = [
                    top.gx + alpha[lnode.node_id] + theta * lnode.score - z
                    for lnode in lnodes
                ]
                perturbed = [p + gumbel() for p in probs]
                max_score = max([-1e8, *perturbed])
                adjusted = []
                for p in perturbed:
                    v = top.fx - p + _log1m_exp(p - max_score)
                    adjusted.append(
                        top.fx - max(0.0, v) - math.log1p(math.exp(-abs(v)))
                    )
                for lnode, gx, fx in zip(lnodes, probs, adjusted):
                    push(_Hypothesis(node=lnode, next=top, fx=fx, gx=gx))
            else:
                for lnode in lnodes:
                    push(
                        _Hypothesis(
                            node=lnode,
                            next=top,
                            fx=lnode.backtrace_score + top.gx,
                            gx=lnode.score + top.gx,
                        )
                    )

            if len(agenda) >= _MAX_AGENDA_SIZE:
                logger.warning("Too big agenda. shrinking")
                keep = min(_MIN_AGENDA_SIZE, nbest_size * 10)
                agenda = heapq.nsmallest(keep, agenda)
                heapq.heapify(agenda)

        return results

    def sample(self, theta: float) -> list[Node]:
        """Draw one path with probability proportional to exp(theta * score)."""
        if self._size == 0:
            return []
        alpha = self.forward_algorithm(theta)
        rng = get_random_generator()
        bos_node = self.bos_node()

        results: list[Node] = []
        node = self.eos_node()
        z = alpha[node.node_id]
        while True:
            lnodes = self._end_nodes[node.pos]
            weights = [
                math.exp(alpha[lnode.node_id] + theta * lnode.score - z)
                for lnode in lnodes
            ]
            node = rng.choices(lnodes, weights=weights)[0]
            if node is bos_node:
                break
            z = alpha[node.node_id]
            results.append(node)
        results.reverse()
        return results