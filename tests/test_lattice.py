import math
from collections import Counter

import pytest

from piecelattice.lattice import Lattice, gumbel, log_sum_exp

THETAS = [0.0, 0.01, 0.5, 0.7, 1.0]
STRINGS = ["ABC", "AB C", "A BC", "A B C"]


def tokenized(nodes):
    return " ".join(node.piece for node in nodes)


def insert_with_score(lattice, pos, length, score, piece_id=None):
    node = lattice.insert(pos, length)
    node.score = score
    if piece_id is not None:
        node.id = piece_id
    return node


def make_abc_lattice(scores, with_ids=False):
    lattice = Lattice()
    lattice.set_sentence("ABC")
    spans = [(0, 1), (1, 1), (2, 1), (0, 2), (1, 2), (0, 3)]
    for i, ((pos, length), score) in enumerate(zip(spans, scores)):
        insert_with_score(lattice, pos, length, score, i if with_ids else None)
    return lattice


def path_probs(theta):
    probs = {
        "ABC": math.exp(theta * 1.0),
        "AB C": math.exp(theta * (0.2 + 0.1)),
        "A BC": math.exp(theta * (0.0 + 0.5)),
        "A B C": math.exp(theta * (0.0 + 0.0 + 0.1)),
    }
    z = sum(probs.values())
    return {k: v / z for k, v in probs.items()}


def inclusion_probs(probs):
    pair = {}
    for first in STRINGS:
        for second in STRINGS:
            if first == second:
                pair[(first, second)] = 0.0
            else:
                pair[(first, second)] = probs[first] * probs[second] / (1 - probs[first])
    result = {}
    for s in STRINGS:
        total = sum(pair[(s, o)] for o in STRINGS) + sum(pair[(o, s)] for o in STRINGS)
        result[s] = total / 2
    return result


def test_log_sum_exp():
    assert log_sum_exp(5.0, 3.0, True) == 3.0
    assert log_sum_exp(0.0, 0.0, False) == pytest.approx(math.log(2.0))
    assert log_sum_exp(0.0, 100.0, False) == 100.0
    assert log_sum_exp(1.0, 2.0, False) == pytest.approx(
        math.log(math.exp(1.0) + math.exp(2.0))
    )


def test_gumbel_mean_is_euler_gamma():
    draws = [gumbel() for _ in range(20000)]
    assert sum(draws) / len(draws) == pytest.approx(0.5772, abs=0.05)


def test_set_sentence():
    lattice = Lattice()
    assert lattice.size() == 0
    assert lattice.utf8_size() == 0

    lattice.set_sentence("")
    assert lattice.size() == 0
    assert lattice.utf8_size() == 0
    assert lattice.sentence() == ""
    assert lattice.surface(0) == ""

    lattice.set_sentence("test")
    assert lattice.size() == 4
    assert lattice.utf8_size() == 4
    assert lattice.sentence() == "test"
    assert lattice.surface(0) == "test"
    assert lattice.surface(1) == "est"
    assert lattice.surface(2) == "st"
    assert lattice.surface(3) == "t"

    bos = lattice.bos_node()
    eos = lattice.eos_node()
    assert bos.id == -1
    assert eos.id == -1
    assert lattice.end_nodes(0)[0] is bos
    assert lattice.begin_nodes(4)[0] is eos

    lattice.set_sentence("テストab")
    assert lattice.size() == 5
    assert lattice.utf8_size() == 11
    assert lattice.sentence() == "テストab"
    assert lattice.surface(0) == "テストab"
    assert lattice.surface(1) == "ストab"
    assert lattice.surface(2) == "トab"
    assert lattice.surface(3) == "ab"
    assert lattice.surface(4) == "b"

    lattice.clear()
    assert lattice.size() == 0
    assert lattice.utf8_size() == 0


def test_insert():
    lattice = Lattice()
    lattice.set_sentence("ABあい")
    spans = [(0, 1), (1, 1), (2, 1), (3, 1), (0, 2), (1, 2), (2, 2)]
    node = [lattice.insert(pos, length) for pos, length in spans]

    assert [n.piece for n in node] == ["A", "B", "あ", "い", "AB", "Bあ", "あい"]
    assert [n.pos for n in node] == [0, 1, 2, 3, 0, 1, 2]
    assert [n.length for n in node] == [1, 1, 1, 1, 2, 2, 2]

    assert lattice.bos_node().node_id == 0
    assert lattice.eos_node().node_id == 1
    assert [n.node_id for n in node] == [2, 3, 4, 5, 6, 7, 8]

    assert [len(lattice.begin_nodes(i)) for i in range(5)] == [2, 2, 2, 1, 1]
    assert [len(lattice.end_nodes(i)) for i in range(5)] == [1, 1, 2, 2, 2]

    assert lattice.begin_nodes(0)[0] is node[0]
    assert lattice.begin_nodes(0)[1] is node[4]
    assert lattice.begin_nodes(1)[0] is node[1]
    assert lattice.begin_nodes(1)[1] is node[5]
    assert lattice.begin_nodes(2)[0] is node[2]
    assert lattice.begin_nodes(2)[1] is node[6]
    assert lattice.begin_nodes(3)[0] is node[3]
    assert lattice.begin_nodes(4)[0] is lattice.eos_node()

    assert lattice.end_nodes(0)[0] is lattice.bos_node()
    assert lattice.end_nodes(1)[0] is node[0]
    assert lattice.end_nodes(2)[0] is node[1]
    assert lattice.end_nodes(2)[1] is node[4]
    assert lattice.end_nodes(3)[0] is node[2]
    assert lattice.end_nodes(3)[1] is node[5]
    assert lattice.end_nodes(4)[0] is node[3]
    assert lattice.end_nodes(4)[1] is node[6]


def test_insert_out_of_range():
    lattice = Lattice()
    lattice.set_sentence("ABC")
    with pytest.raises(IndexError):
        lattice.insert(2, 2)


def test_viterbi_from_incomplete_lattice():
    lattice = Lattice()
    lattice.set_sentence("ABC")
    assert lattice.viterbi().nodes == []

    lattice.insert(0, 1)
    assert lattice.viterbi().nodes == []

    lattice.insert(1, 1)
    lattice.insert(2, 1)
    assert tokenized(lattice.viterbi().nodes) == "A B C"


def test_viterbi():
    lattice = Lattice()
    lattice.set_sentence("ABC")
    insert_with_score(lattice, 0, 1, 0.0)
    insert_with_score(lattice, 1, 1, 0.0)
    insert_with_score(lattice, 2, 1, 0.0)
    assert tokenized(lattice.viterbi().nodes) == "A B C"

    insert_with_score(lattice, 0, 2, 2.0)
    assert tokenized(lattice.viterbi().nodes) == "AB C"

    insert_with_score(lattice, 1, 2, 5.0)
    assert tokenized(lattice.viterbi().nodes) == "A BC"

    insert_with_score(lattice, 0, 3, 10.0)
    path = lattice.viterbi()
    assert tokenized(path.nodes) == "ABC"
    assert path.score == pytest.approx(10.0)


def test_nbest():
    lattice = make_abc_lattice([0.0, 0.0, 0.0, 2.0, 5.0, 10.0])

    nbests = lattice.nbest(10, False, 0.0)
    assert len(nbests) == 4
    assert [tokenized(n.nodes) for n in nbests] == ["ABC", "A BC", "AB C", "A B C"]
    assert [n.score for n in nbests] == pytest.approx([10.0, 5.0, 2.0, 0.0])

    assert lattice.nbest(0, False, 0.0) == []
    assert len(lattice.nbest(1, False, 0.0)) == 1


def test_nbest_sample():
    lattice = make_abc_lattice([0.0, 0.0, 0.1, 0.2, 0.5, 1.0])
    trials = 5000
    for theta in THETAS:
        probs = path_probs(theta)
        incl = inclusion_probs(probs)
        for num_samples in (1, 2):
            counts = Counter()
            for _ in range(trials):
                for nbest in lattice.nbest(num_samples, True, theta):
                    counts[tokenized(nbest.nodes)] += 1
            assert len(counts) == len(incl)
            expected = probs if num_samples == 1 else incl
            for key, value in expected.items():
                assert counts[key] / (trials * num_samples) == pytest.approx(
                    value, abs=0.02
                )


def test_calculate_entropy():
    lattice = make_abc_lattice([0.0, 0.0, 0.1, 0.2, 0.5, 1.0])
    for theta in THETAS:
        probs = path_probs(theta)
        entropy = sum(p * math.log(p) for p in probs.values())
        assert lattice.calculate_entropy(theta) == pytest.approx(-entropy, abs=0.02)


def test_forward_algorithm():
    lattice = make_abc_lattice([0.0, 0.0, 0.1, 0.2, 0.5, 1.0])
    for theta in THETAS:
        alpha = lattice.forward_algorithm(theta)
        assert len(alpha) == 8
        for i in range(4):
            for node in lattice.begin_nodes(i):
                if i < 2:
                    assert alpha[node.node_id] == 0.0
                elif i == 2:
                    z = math.log(math.exp(theta * 0.0) + math.exp(theta * 0.2))
                    assert alpha[node.node_id] == pytest.approx(z, abs=1e-6)
                else:
                    z = math.log(
                        math.exp(theta * 0.1)
                        + math.exp(theta * 0.3)
                        + math.exp(theta * 0.5)
                        + math.exp(theta * 1.0)
                    )
                    assert alpha[node.node_id] == pytest.approx(z, abs=1e-6)


def test_backward_matches_forward_partition():
    lattice = make_abc_lattice([1.0, 1.2, 2.5, 3.0, 4.0, 2.0])
    alpha = lattice.forward_algorithm(1.0)
    beta = lattice.backward_algorithm(1.0)
    assert beta[lattice.bos_node().node_id] == pytest.approx(
        alpha[lattice.eos_node().node_id]
    )


def test_populate_marginal():
    lattice = make_abc_lattice([1.0, 1.2, 2.5, 3.0, 4.0, 2.0], with_ids=True)
    probs = [0.0] * 6
    p1 = math.exp(1.0 + 1.2 + 2.5)
    p2 = math.exp(3.0 + 2.5)
    p3 = math.exp(1.0 + 4.0)
    p4 = math.exp(2.0)
    z = p1 + p2 + p3 + p4

    log_z = lattice.populate_marginal(1.0, probs)

    assert probs[0] == pytest.approx((p1 + p3) / z, abs=0.001)
    assert probs[1] == pytest.approx(p1 / z, abs=0.001)
    assert probs[2] == pytest.approx((p1 + p2) / z, abs=0.001)
    assert probs[3] == pytest.approx(p2 / z, abs=0.001)
    assert probs[4] == pytest.approx(p3 / z, abs=0.001)
    assert probs[5] == pytest.approx(p4 / z, abs=0.001)
    assert log_z == pytest.approx(math.log(z), abs=0.001)


def test_populate_marginal_without_target():
    lattice = make_abc_lattice([1.0, 1.2, 2.5, 3.0, 4.0, 2.0], with_ids=True)
    assert lattice.populate_marginal(1.0, None) == 0.0


def test_sample():
    lattice = make_abc_lattice([1.0, 1.2, 1.5, 1.6, 1.7, 1.8], with_ids=True)
    trials = 20000
    for theta in THETAS:
        probs = {
            "A B C": math.exp(theta * (1.0 + 1.2 + 1.5)),
            "AB C": math.exp(theta * (1.6 + 1.5)),
            "A BC": math.exp(theta * (1.0 + 1.7)),
            "ABC": math.exp(theta * 1.8),
        }
        z = sum(probs.values())
        freq = Counter(tokenized(lattice.sample(theta)) for _ in range(trials))
        assert len(freq) == len(probs)
        for key, value in probs.items():
            assert freq[key] / trials == pytest.approx(value / z, abs=0.02)


def test_sample_empty_sentence():
    lattice = Lattice()
    lattice.set_sentence("")
    assert lattice.sample(1.0) == []