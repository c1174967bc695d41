[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "piecelattice"
version = "0.1.0"
description = "Unigram language-model and word-level subword segmentation over a lattice"
requires-python = ">=3.10"
dependencies = []
keywords = ["tokenization", "subword", "unigram", "lattice", "viterbi", "segmentation", "nlp"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Text Processing :: Linguistic",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["piecelattice"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
