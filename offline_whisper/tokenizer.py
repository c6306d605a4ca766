"""Token ids to text.

Whisper uses the GPT-2 byte-level BPE alphabet. The vocabulary is loaded
into a Hugging Face ``tokenizers`` model whose ByteLevel decoder maps the
byte stand-in characters back to UTF-8 text.
"""

import json
import logging
import os
from typing import Iterable, Mapping

from tokenizers import Tokenizer, decoders, models

from .constants import NO_SPEECH_TEXT, is_special_token
from .exceptions import ModelLoadFailedError

logger = logging.getLogger(__name__)


class Detokenizer:
    """Maps token sequences to text through a vocabulary table.

    Attributes:
        vocab: Token id to vocabulary string
        tokenizer: Byte-level BPE tokenizer built from ``vocab``
    """

    def __init__(self, vocab: Mapping[int, str]):
        if not vocab:
            raise ValueError("vocab cannot be empty")
        self.vocab = dict(vocab)

        # decoding never applies merges
        self.tokenizer = Tokenizer(
            models.BPE(
                vocab={token: token_id for token_id, token in self.vocab.items()},
                merges=[],
            )
        )
        self.tokenizer.decoder = decoders.ByteLevel()

    @classmethod
    def from_file(cls, path: str) -> "Detokenizer":
        """Load a Hugging Face vocab.json (token string -> id).

        Raises:
            ModelLoadFailedError: If the file is missing or malformed
        """
        if not os.path.isfile(path):
            raise ModelLoadFailedError(f"Vocabulary file '{path}' not found")

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise ModelLoadFailedError(
                f"Failed to read vocabulary '{path}': {str(e)}"
            ) from e

        if not isinstance(data, dict) or not data:
            raise ModelLoadFailedError(f"Vocabulary '{path}' must be a non-empty JSON object")

        try:
            vocab = {int(token_id): token for token, token_id in data.items()}
        except (TypeError, ValueError) as e:
            raise ModelLoadFailedError(
                f"Vocabulary '{path}' must map token strings to integer ids"
            ) from e

        logger.info(f"Loaded vocabulary with {len(vocab)} entries from '{path}'")
        return cls(vocab)

    def detokenize(self, tokens: Iterable[int]) -> str:
        """Convert a token sequence into text.

        Control tokens are dropped first. Returns NO_SPEECH_TEXT when no
        text tokens remain, so silence is distinguishable from "not run".
        """
        text_tokens = [t for t in tokens if not is_special_token(t)]
        if not text_tokens:
            return NO_SPEECH_TEXT

        known = []
        for token in text_tokens:
            if token not in self.vocab:
                logger.debug(f"Skipping token {token} missing from vocabulary")
                continue
            known.append(token)

        text = self.tokenizer.decode(known, skip_special_tokens=False).strip()
        return text or NO_SPEECH_TEXT
