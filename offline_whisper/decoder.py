"""Greedy autoregressive token decoding.

The decoder is a small state machine:

    SEED        tokens = [SOT, NO_TIMESTAMPS]
    STEPPING    run the backend decoder on the whole prefix, pick the next
                token from the final-position logits, append it; stop on
                EOT / NO_SPEECH or when the sequence reaches max_tokens
    TERMINATED  tokens are frozen into a DecodeResult

Cancellation and the wall-clock deadline are checked at every iteration
boundary. Any backend failure aborts the decode; partial tokens are
discarded.
"""

import logging
import math
import threading
import time
from enum import Enum
from typing import List, Optional, Protocol

import numpy as np

from .backend import InferenceBackend
from .constants import MAX_TOKENS, SEED_TOKENS, TERMINAL_TOKENS, language_for_token
from .data_models import DecodeResult, EncoderOutput
from .exceptions import DecodeFailedError, OperationCancelledError

logger = logging.getLogger(__name__)


class DecoderState(Enum):
    SEED = "seed"
    STEPPING = "stepping"
    TERMINATED = "terminated"


class TokenSelector(Protocol):
    """Strategy that picks the next token from a logits vector."""

    def select(self, logits: np.ndarray) -> int:
        ...


class GreedySelector:
    """Arg-max selection.

    Ties resolve to the lowest token id, matching a left-to-right scan
    with a strict ``>`` comparison. NaN logits are never selected.
    """

    def select(self, logits: np.ndarray) -> int:
        scores = np.where(np.isnan(logits), -np.inf, logits)
        return int(np.argmax(scores))


def _log_softmax_at(logits: np.ndarray, index: int) -> float:
    finite = logits[np.isfinite(logits)]
    if finite.size == 0 or not np.isfinite(logits[index]):
        return float("-inf")
    peak = float(finite.max())
    log_norm = peak + math.log(float(np.sum(np.exp(finite.astype(np.float64) - peak))))
    return float(logits[index]) - log_norm


class GreedyDecoder:
    """Runs the token-by-token decode loop against a backend.

    Attributes:
        backend: Decoder execution engine
        selector: Next-token strategy (default: GreedySelector)
        max_tokens: Upper bound on the full sequence length, seed included
        state: Current DecoderState of the last decode call
    """

    def __init__(
        self,
        backend: InferenceBackend,
        selector: Optional[TokenSelector] = None,
        max_tokens: int = MAX_TOKENS,
    ):
        if not isinstance(max_tokens, int):
            raise TypeError(f"max_tokens must be int, got {type(max_tokens).__name__}")
        if max_tokens <= len(SEED_TOKENS):
            raise ValueError(
                f"max_tokens must exceed the {len(SEED_TOKENS)} seed tokens, got {max_tokens}"
            )

        self.backend = backend
        self.selector = selector or GreedySelector()
        self.max_tokens = max_tokens
        self.state = DecoderState.SEED

    def decode(
        self,
        encoder_output: EncoderOutput,
        cancel_event: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
    ) -> DecodeResult:
        """Decode tokens until a terminal token or the length limit.

        Args:
            encoder_output: Hidden states shared by every step
            cancel_event: Set to stop at the next iteration boundary
            deadline: time.monotonic() value after which decoding fails

        Returns:
            DecodeResult whose tokens start with the seed tokens

        Raises:
            OperationCancelledError: If cancel_event was set
            DecodeFailedError: On backend failure, malformed logits or timeout
        """
        self.state = DecoderState.SEED
        tokens: List[int] = list(SEED_TOKENS)
        log_probs: List[float] = []
        language = None
        truncated = False

        self.state = DecoderState.STEPPING
        try:
            for step in range(self.max_tokens - len(SEED_TOKENS)):
                if cancel_event is not None and cancel_event.is_set():
                    raise OperationCancelledError(f"decoding cancelled after {step} tokens")
                if deadline is not None and time.monotonic() > deadline:
                    raise DecodeFailedError(f"decoding timed out after {step} tokens")

                logits = self._final_logits(tokens, encoder_output)
                token = self.selector.select(logits)
                if not 0 <= token < logits.shape[0]:
                    raise DecodeFailedError(
                        f"selector returned token {token} outside vocabulary of {logits.shape[0]}"
                    )

                tokens.append(token)
                log_probs.append(_log_softmax_at(logits, token))
                if language is None:
                    language = language_for_token(token)

                if token in TERMINAL_TOKENS:
                    break
            else:
                truncated = True
                logger.warning(
                    f"Decoding stopped at the {self.max_tokens}-token limit without end of transcript"
                )
        finally:
            self.state = DecoderState.TERMINATED

        confidence = math.exp(sum(log_probs) / len(log_probs)) if log_probs else 0.0
        logger.debug(f"Decoded {len(tokens) - len(SEED_TOKENS)} tokens (truncated={truncated})")

        return DecodeResult(
            tokens=tuple(tokens),
            confidence=min(max(confidence, 0.0), 1.0),
            truncated=truncated,
            language=language,
        )

    def _final_logits(self, tokens: List[int], encoder_output: EncoderOutput) -> np.ndarray:
        input_ids = np.array([tokens], dtype=np.int64)
        try:
            logits = self.backend.decode(input_ids, encoder_output.hidden_states)
        except Exception as e:
            raise DecodeFailedError(
                f"Decoder execution failed at position {len(tokens)}: {str(e)}"
            ) from e

        logits = np.asarray(logits)
        if logits.ndim == 0 or logits.shape[-1] == 0:
            raise DecodeFailedError(f"decoder returned malformed logits {list(logits.shape)}")
        return logits.reshape(-1, logits.shape[-1])[-1]
