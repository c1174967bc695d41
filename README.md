# piecelattice

Splits text into subword pieces. The main tool is a unigram language
model: every possible split of a sentence goes into a lattice of scored
candidate pieces. From that lattice you can take the best split (Viterbi),
list the n best, draw random splits, or compute marginals and entropy.
A small word model is also included. It treats each word marked by the
`▁` symbol as one piece.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Unigram model

Build a model from a list of `SentencePiece` entries. Each entry has a
piece string, a score (a log probability) and a `PieceType`. Exactly one
entry must be of type `UNKNOWN`. Empty or repeated pieces raise
`ValueError`.

```python
from piecelattice.unigram_model import UnigramModel, SentencePiece, PieceType

pieces = [
    SentencePiece("<unk>", 0.0, PieceType.UNKNOWN),
    SentencePiece("<s>", 0.0, PieceType.CONTROL),
    SentencePiece("</s>", 0.0, PieceType.CONTROL),
    SentencePiece("ab", 0.0),
    SentencePiece("cd", -0.1),
    SentencePiece("abc", -0.2),
    SentencePiece("a", -0.3),
    SentencePiece("b", -0.4),
    SentencePiece("c", -0.5),
]
model = UnigramModel(pieces)

model.encode("abcd")             # [("ab", 3), ("cd", 4)]
model.piece_to_id("abc")         # 5
model.id_to_piece(0)             # "<unk>"
model.nbest_encode("abcd", 3)    # [(pieces, score), ...], best first
model.sample_encode("abcd", 0.5) # one split drawn at random
model.calculate_entropy("abcd", 1.0)
```

Characters that no piece covers come out as one-character pieces with
the unknown id. Their score is `min_score() - 10`. Pieces of type
`USER_DEFINED` get a bonus based on `max_score()`, so they win whenever
they match. Pieces of type `UNUSED` are never chosen. Text may be given
as `str` or as UTF-8 `bytes`.

By default `encode` uses a single-pass search that keeps only the best
path ending at each position. `set_encoder_version(EncoderVersion.ORIGINAL)`
switches it to a full search over the lattice.

`sample_encode_and_score(text, theta, samples, wor, include_best)` draws
several splits. With `wor=True` they are drawn without replacement, and
each comes with its log inclusion probability. `include_best=True` puts
the Viterbi split first with score 0. It needs `wor=True`; otherwise it
raises `ValueError`.

`verify_outputs_equivalent(expected, actual)` compares two
space-separated piece sequences by their total score.

## Lattice

`piecelattice.lattice.Lattice` can also be used on its own:

```python
from piecelattice.lattice import Lattice

lattice = Lattice()
lattice.set_sentence("ABC")
for pos, length, score in [(0, 1, 0.0), (1, 1, 0.0), (2, 1, 0.0), (0, 2, 2.0)]:
    lattice.insert(pos, length).score = score

path, score = lattice.viterbi()
[node.piece for node in path]   # ["AB", "C"]
```

Positions and lengths count Unicode characters. `forward_algorithm`,
`backward_algorithm`, `populate_marginal`, `calculate_entropy`, `nbest`
and `sample` all work on the same lattice. `viterbi` returns an empty
path when the lattice does not cover the whole sentence.

## Word model

`piecelattice.word_model.WordModel` splits text before each `▁` (U+2581)
marker and looks up each word as a whole piece:

```python
from piecelattice.word_model import split_into_words

split_into_words("▁ab▁cd")   # ["▁ab", "▁cd"]
```

`WordModel.nbest_encode` and `WordModel.sample_encode` always return an
empty list, because a word model has only one way to split its input.

## Utilities

`piecelattice.util` contains:

- UTF-8 helpers: `decode_utf8`, `encode_utf8`, `is_structurally_valid`,
  `utf8_to_unicode_text` and others.
- A per-thread random generator with a fixed seed option
  (`set_random_generator_seed`, `get_random_generator`).
- `ReservoirSampler`.
- Small conversion and text helpers, such as `lexical_cast`,
  `str_split_as_csv` and `join_path`.

`piecelattice.freelist.FreeList` is a pool that hands out objects a chunk
at a time and can be reset for reuse.

## What it does not do

The package does not train models, normalize text, read or write model
files, or provide a command-line tool. You build vocabularies in code
from `SentencePiece` entries. Input is expected to be normalized already,
with spaces written as `▁`.