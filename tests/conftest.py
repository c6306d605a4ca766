"""Shared fixtures: in-process backends and a tiny vocabulary."""

import json
import threading
import time

import numpy as np
import pytest

from offline_whisper.constants import (
    SAMPLE_RATE,
    SEED_TOKENS,
    TOKEN_EOT,
    TOKEN_NO_TIMESTAMPS,
    TOKEN_SOT,
)
from offline_whisper.data_models import AudioBuffer
from offline_whisper.models import ModelHandle

VOCAB_SIZE = 51865

TOKEN_HELLO = 100
TOKEN_WORLD = 200
TOKEN_PERIOD = 300

VOCAB = {
    "Hello": TOKEN_HELLO,
    "Ġworld": TOKEN_WORLD,
    ".": TOKEN_PERIOD,
    "<|endoftext|>": TOKEN_EOT,
    "<|startoftranscript|>": TOKEN_SOT,
    "<|notimestamps|>": TOKEN_NO_TIMESTAMPS,
}


class ScriptedBackend:
    """Backend whose decoder emits a fixed token script.

    The token at decoder position i is script[i]; past the end of the
    script the last token repeats. Logits have shape [1, 1, vocab_size].
    """

    def __init__(self, script, vocab_size=VOCAB_SIZE, delay=0.0, gate=None):
        self.script = list(script)
        self.vocab_size = vocab_size
        self.delay = delay
        self.gate = gate
        self.encode_calls = 0
        self.decode_calls = 0
        self.closed = False
        self.last_features = None
        self.decode_started = threading.Event()

    def encode(self, input_features):
        self.encode_calls += 1
        self.last_features = input_features
        return np.zeros((1, 4, 8), dtype=np.float32)

    def decode(self, input_ids, encoder_hidden_states):
        self.decode_calls += 1
        self.decode_started.set()
        if self.gate is not None:
            self.gate.wait(timeout=10)
        if self.delay:
            time.sleep(self.delay)

        position = input_ids.shape[1] - len(SEED_TOKENS)
        token = self.script[min(position, len(self.script) - 1)]
        logits = np.full((1, 1, self.vocab_size), -10.0, dtype=np.float32)
        logits[0, -1, token] = 10.0
        return logits

    def close(self):
        self.closed = True


class FailingBackend:
    """Backend that raises from the encoder or the decoder."""

    def __init__(self, fail_on="decode"):
        self.fail_on = fail_on
        self.closed = False

    def encode(self, input_features):
        if self.fail_on == "encode":
            raise RuntimeError("encoder exploded")
        return np.zeros((1, 4, 8), dtype=np.float32)

    def decode(self, input_ids, encoder_hidden_states):
        raise RuntimeError("decoder exploded")

    def close(self):
        self.closed = True


@pytest.fixture
def vocab_file(tmp_path):
    path = tmp_path / "vocab.json"
    path.write_text(json.dumps(VOCAB), encoding="utf-8")
    return str(path)


@pytest.fixture
def model_handle(tmp_path, vocab_file):
    return ModelHandle(
        variant="tiny",
        encoder_path=str(tmp_path / "encoder.onnx"),
        decoder_path=str(tmp_path / "decoder.onnx"),
        vocab_path=vocab_file,
    )


@pytest.fixture
def speech_script():
    return [TOKEN_HELLO, TOKEN_WORLD, TOKEN_PERIOD, TOKEN_EOT]


@pytest.fixture
def one_second_tone():
    t = np.arange(SAMPLE_RATE, dtype=np.float32) / SAMPLE_RATE
    samples = (0.5 * np.sin(2 * np.pi * 440.0 * t)).astype(np.float32)
    return AudioBuffer(samples=samples, sample_rate=SAMPLE_RATE, channels=1)
