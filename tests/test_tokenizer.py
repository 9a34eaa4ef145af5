"""
Module: tests.test_tokenizer
Purpose: Tokenizer normalization, sub-word fallback, padding and truncation
"""

import json

import numpy as np
import pytest

from fakes import VOCAB, make_tokenizer, write_vocab
from sd_sampler.errors import ResourceLoadFailure
from sd_sampler.tokenizer import (
    END_TOKEN,
    MAX_LENGTH,
    PAD_TOKEN,
    START_TOKEN,
    CLIPTokenizer,
    Vocabulary,
)


def test_encode_shape_and_dtype():
    """Every encoding is a (1, 77) int32 tensor starting with the start token."""
    tok = make_tokenizer()

    for text in ["a photo of a cat", "", "   ", "zzz qqq", "Ünïcödé ✨ text", "test " * 200]:
        tokens = tok.encode(text)
        assert tokens.shape == (1, MAX_LENGTH), f"Bad shape for {text!r}: {tokens.shape}"
        assert tokens.dtype == np.int32
        assert tokens.data[0] == START_TOKEN


def test_known_words():
    tok = make_tokenizer()

    ids = tok.tokenize("a photo of a cat")

    assert ids == [START_TOKEN, 320, 1125, 539, 320, 2368, END_TOKEN]


def test_empty_string_is_start_end_then_padding():
    tok = make_tokenizer()

    ids = tok.encode("").data.tolist()

    assert ids[:2] == [START_TOKEN, END_TOKEN]
    assert ids[2:] == [PAD_TOKEN] * 75


def test_whitespace_only_matches_empty_string():
    tok = make_tokenizer()

    assert tok.encode(" \t\n ") == tok.encode("")


def test_normalization_lowercases_and_collapses_whitespace():
    tok = make_tokenizer()

    assert CLIPTokenizer.normalize("  A   Photo\tOF\n Cat ") == "a photo of cat"
    assert tok.tokenize("  A   Photo\tOF\n A CAT ") == tok.tokenize("a photo of a cat")


def test_subword_longest_prefix():
    """'sunflowering' splits greedily into sun + flower + ing."""
    tok = make_tokenizer()

    ids = tok.tokenize("sunflowering")

    assert ids == [START_TOKEN, VOCAB["sun"], VOCAB["flower"], VOCAB["ing"], END_TOKEN]


def test_subword_prefers_longest_match():
    tok = make_tokenizer({"c": 1, "ca": 2, "cat": 3, "s": 4})

    assert tok.split_subwords("cats") == [3, 4]


def test_unmatched_characters_are_dropped():
    """Characters with no matching prefix emit nothing."""
    tok = make_tokenizer()

    # 'x' and '!' are unknown, 'cat' and 'dog' are found around them
    assert tok.split_subwords("xcat!dog") == [VOCAB["cat"], VOCAB["dog"]]


def test_fully_unknown_word_emits_end_token_placeholder():
    tok = make_tokenizer()

    ids = tok.tokenize("zzzz")

    assert ids == [START_TOKEN, END_TOKEN, END_TOKEN]


def test_unknown_word_terminates_with_empty_vocabulary():
    tok = make_tokenizer({})
    word = "q" * 5000

    tokens = tok.encode(word)

    assert tokens.shape == (1, MAX_LENGTH)
    assert tokens.data.tolist()[:3] == [START_TOKEN, END_TOKEN, END_TOKEN]


def test_long_text_truncated_and_may_lose_end_token():
    tok = make_tokenizer()

    ids = tok.encode("test " * 100).data.tolist()

    assert len(ids) == MAX_LENGTH
    assert ids[0] == START_TOKEN
    assert ids[1:] == [VOCAB["test"]] * 76
    assert END_TOKEN not in ids


def test_exact_fit_keeps_end_token():
    tok = make_tokenizer()

    ids = tok.encode("test " * 75).data.tolist()

    assert ids[-1] == END_TOKEN
    assert PAD_TOKEN not in ids


def test_vocabulary_is_read_only():
    vocab = Vocabulary({"a": 1})

    with pytest.raises(TypeError):
        vocab["b"] = 2
    assert vocab.max_token_length == 1


def test_vocabulary_from_file(tmp_path):
    path = write_vocab(tmp_path)

    tok = CLIPTokenizer.from_file(path)

    assert len(tok.vocabulary) == len(VOCAB)
    assert tok.tokenize("cat") == [START_TOKEN, VOCAB["cat"], END_TOKEN]


def test_vocabulary_missing_file(tmp_path):
    with pytest.raises(ResourceLoadFailure):
        Vocabulary.from_file(tmp_path / "missing.json")


@pytest.mark.parametrize("content", [
    "{not json",
    json.dumps(["a", "b"]),
    json.dumps({"a": -1}),
    json.dumps({"a": "one"}),
])
def test_vocabulary_corrupt_file(tmp_path, content):
    path = tmp_path / "clip_vocab.json"
    path.write_text(content)

    with pytest.raises(ResourceLoadFailure):
        Vocabulary.from_file(path)
