"""
Module: sd_sampler.tokenizer
Purpose: Fixed-length CLIP-style tokenizer with greedy sub-word fallback
Dependencies: numpy

Words found in the vocabulary map to a single id. Unknown words are split by
repeatedly taking the longest known prefix. A position where no prefix
matches drops one character without emitting a token; this lossy behavior is
kept as-is so token ids stay compatible with existing prompts.
"""

from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Union
import json
import logging
import re

import numpy as np

from sd_sampler.errors import ResourceLoadFailure
from sd_sampler.tensor import Tensor

logger = logging.getLogger(__name__)

MAX_LENGTH = 77
START_TOKEN = 49406  # <|startoftext|>
END_TOKEN = 49407    # <|endoftext|>
PAD_TOKEN = 0

_WHITESPACE = re.compile(r"\s+")


class Vocabulary(Mapping[str, int]):
    """
    Read-only mapping from token string to id.

    Example:
        >>> vocab = Vocabulary({"a": 320, "cat": 2368})
        >>> vocab["cat"]
        2368
    """

    def __init__(self, entries: Mapping[str, int]):
        for token, token_id in entries.items():
            if not isinstance(token, str):
                raise ValueError(f"Vocabulary key must be a string, got {token!r}")
            if isinstance(token_id, bool) or not isinstance(token_id, int) or token_id < 0:
                raise ValueError(f"Vocabulary id for {token!r} must be a non-negative integer")
        self._entries = MappingProxyType(dict(entries))
        # Longest entry bounds the prefix search
        self.max_token_length = max((len(t) for t in self._entries), default=0)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "Vocabulary":
        """
        Load a vocabulary from a JSON object of {token: id}.

        Raises:
            ResourceLoadFailure: If the file is missing, unreadable or malformed
        """
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                entries = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ResourceLoadFailure(f"vocabulary {path}", str(e)) from e

        if not isinstance(entries, dict):
            raise ResourceLoadFailure(f"vocabulary {path}", "expected a JSON object of token ids")

        try:
            vocab = cls(entries)
        except ValueError as e:
            raise ResourceLoadFailure(f"vocabulary {path}", str(e)) from e

        logger.info(f"Loaded vocabulary with {len(vocab)} entries from {path}")
        return vocab

    def __getitem__(self, token: str) -> int:
        return self._entries[token]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


class CLIPTokenizer:
    """
    Maps prompt text to a fixed-length int32 token tensor of shape (1, 77).

    Attributes:
        vocabulary: Token string to id mapping
        max_length: Length of every encoded sequence
        start_token, end_token, pad_token: Reserved ids

    Example:
        >>> tok = CLIPTokenizer(Vocabulary({"a": 320, "cat": 2368}))
        >>> tok.tokenize("A  cat")
        [49406, 320, 2368, 49407]
        >>> tok.encode("a cat").shape
        (1, 77)
    """

    def __init__(
        self,
        vocabulary: Mapping[str, int],
        max_length: int = MAX_LENGTH,
        start_token: int = START_TOKEN,
        end_token: int = END_TOKEN,
        pad_token: int = PAD_TOKEN,
    ):
        if max_length < 1:
            raise ValueError(f"max_length must be positive, got {max_length}")
        if not isinstance(vocabulary, Vocabulary):
            vocabulary = Vocabulary(vocabulary)
        self.vocabulary = vocabulary
        self.max_length = max_length
        self.start_token = start_token
        self.end_token = end_token
        self.pad_token = pad_token

    @classmethod
    def from_file(cls, vocab_path: Union[str, Path], **kwargs) -> "CLIPTokenizer":
        return cls(Vocabulary.from_file(vocab_path), **kwargs)

    @staticmethod
    def normalize(text: str) -> str:
        """Lowercase, trim, and collapse whitespace runs to one space."""
        return _WHITESPACE.sub(" ", text.lower().strip())

    def split_subwords(self, word: str) -> List[int]:
        """
        Greedy longest-prefix segmentation of a word missing from the vocabulary.

        Returns a single end token when nothing in the word matches.
        """
        tokens: List[int] = []
        vocab = self.vocabulary
        remaining = word

        while remaining:
            longest = min(len(remaining), vocab.max_token_length)
            for length in range(longest, 0, -1):
                token_id = vocab.get(remaining[:length])
                if token_id is not None:
                    tokens.append(token_id)
                    remaining = remaining[length:]
                    break
            else:
                # Unknown character, emits nothing
                remaining = remaining[1:]

        return tokens or [self.end_token]

    def tokenize(self, text: str) -> List[int]:
        """Token ids for `text` including start and end, without padding or truncation."""
        tokens = [self.start_token]

        normalized = self.normalize(text)
        for word in normalized.split(" ") if normalized else []:
            token_id = self.vocabulary.get(word)
            if token_id is not None:
                tokens.append(token_id)
            else:
                tokens.extend(self.split_subwords(word))

        tokens.append(self.end_token)
        return tokens

    def encode_ids(self, text: str) -> List[int]:
        """Token ids padded or truncated to exactly max_length."""
        tokens = self.tokenize(text)

        if len(tokens) < self.max_length:
            tokens.extend([self.pad_token] * (self.max_length - len(tokens)))
        elif len(tokens) > self.max_length:
            # May cut the end token off long prompts
            logger.debug(f"Truncating {len(tokens)} tokens to {self.max_length}")
            tokens = tokens[: self.max_length]

        return tokens

    def encode(self, text: str) -> Tensor:
        """
        Encode text as an int32 tensor of shape (1, max_length).

        Never fails on input; an empty string yields start, end, then padding.
        """
        ids = self.encode_ids(text)
        return Tensor(np.asarray(ids, dtype=np.int32), (1, self.max_length), dtype=np.int32)
