"""Model variants and the local model cache.

Each variant is an ONNX export of a multilingual Whisper checkpoint hosted
on Hugging Face. Downloaded files live under
<download_root>/whisper-<size>/{encoder,decoder}.onnx next to the
vocab.json vocabulary.
"""

import logging
import os
import shutil
from dataclasses import dataclass
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

HUGGINGFACE_BASE_URL = "https://huggingface.co/{repo}/resolve/main/{filename}"

ENCODER_FILENAME = "encoder.onnx"
DECODER_FILENAME = "decoder.onnx"
VOCAB_FILENAME = "vocab.json"

ENV_HOME = "OFFLINE_WHISPER_HOME"


def default_download_root() -> str:
    """Model cache root: $OFFLINE_WHISPER_HOME or ~/.cache/offline-whisper/models."""
    root = os.environ.get(ENV_HOME)
    if root:
        return root
    return os.path.join(os.path.expanduser("~"), ".cache", "offline-whisper", "models")


def format_bytes(num_bytes: int) -> str:
    """Human-readable byte count, e.g. '75.00 MB'."""
    for unit, scale in (("GB", 1024 ** 3), ("MB", 1024 ** 2), ("KB", 1024)):
        if num_bytes >= scale:
            return f"{num_bytes / scale:.2f} {unit}"
    return f"{num_bytes} B"


@dataclass(frozen=True)
class ModelVariant:
    """A downloadable Whisper model size.

    Attributes:
        size: Size name ("tiny", "base", "small", "medium")
        repo: Hugging Face repository holding the ONNX export
        estimated_size: Approximate download size in bytes
    """
    size: str
    repo: str
    estimated_size: int
    remote_encoder: str = "onnx/encoder_model.onnx"
    remote_decoder: str = "onnx/decoder_model.onnx"
    remote_vocab: str = "vocab.json"

    @property
    def name(self) -> str:
        return f"whisper-{self.size}"

    @property
    def encoder_url(self) -> str:
        return HUGGINGFACE_BASE_URL.format(repo=self.repo, filename=self.remote_encoder)

    @property
    def decoder_url(self) -> str:
        return HUGGINGFACE_BASE_URL.format(repo=self.repo, filename=self.remote_decoder)

    @property
    def vocab_url(self) -> str:
        return HUGGINGFACE_BASE_URL.format(repo=self.repo, filename=self.remote_vocab)

    @property
    def readable_size(self) -> str:
        return format_bytes(self.estimated_size)


MODEL_VARIANTS: Dict[str, ModelVariant] = {
    variant.size: variant
    for variant in (
        ModelVariant("tiny", "onnx-community/whisper-tiny", 150 * 1024 ** 2),
        ModelVariant("base", "onnx-community/whisper-base", 290 * 1024 ** 2),
        ModelVariant("small", "onnx-community/whisper-small", 970 * 1024 ** 2),
        ModelVariant("medium", "onnx-community/whisper-medium", 3 * 1024 ** 3),
    )
}


@dataclass(frozen=True)
class ModelHandle:
    """Identifies the artifacts of one model variant on disk.

    Attributes:
        variant: Model size name
        encoder_path: Path to the encoder graph
        decoder_path: Path to the decoder graph
        vocab_path: Path to the vocabulary
    """
    variant: str
    encoder_path: str
    decoder_path: str
    vocab_path: str


class ModelManager:
    """Tracks which model variants are present in the local cache.

    Construct one explicitly and pass it to whatever needs it; there is
    no process-wide instance.

    Attributes:
        download_root: Directory holding one folder per model
    """

    def __init__(self, download_root: Optional[str] = None):
        if download_root is not None and not isinstance(download_root, (str, os.PathLike)):
            raise TypeError(
                f"download_root must be str, got {type(download_root).__name__}"
            )
        self.download_root = os.fspath(download_root) if download_root else default_download_root()

    def get_variant(self, size: str) -> ModelVariant:
        if not isinstance(size, str):
            raise TypeError(f"model size must be str, got {type(size).__name__}")
        try:
            return MODEL_VARIANTS[size]
        except KeyError:
            raise ValueError(
                f"Unknown model size '{size}'. Available: {', '.join(MODEL_VARIANTS)}"
            ) from None

    def model_dir(self, size: str) -> str:
        return os.path.join(self.download_root, self.get_variant(size).name)

    def get_handle(self, size: str) -> ModelHandle:
        model_dir = self.model_dir(size)
        return ModelHandle(
            variant=size,
            encoder_path=os.path.join(model_dir, ENCODER_FILENAME),
            decoder_path=os.path.join(model_dir, DECODER_FILENAME),
            vocab_path=os.path.join(model_dir, VOCAB_FILENAME),
        )

    def is_downloaded(self, size: str) -> bool:
        """True when both model graphs and the vocabulary are present."""
        handle = self.get_handle(size)
        return all(
            os.path.isfile(path)
            for path in (handle.encoder_path, handle.decoder_path, handle.vocab_path)
        )

    def list_models(self) -> List[ModelVariant]:
        return list(MODEL_VARIANTS.values())

    def downloaded_models(self) -> List[ModelVariant]:
        return [v for v in MODEL_VARIANTS.values() if self.is_downloaded(v.size)]

    def delete_model(self, size: str) -> bool:
        """Remove a model folder. Returns False if nothing was there."""
        model_dir = self.model_dir(size)
        if not os.path.isdir(model_dir):
            return False
        shutil.rmtree(model_dir)
        logger.info(f"Deleted model '{size}' from '{model_dir}'")
        return True

    def clear_all(self) -> int:
        """Delete every cached model and return how many were removed."""
        return sum(1 for size in MODEL_VARIANTS if self.delete_model(size))

    def total_downloaded_size(self) -> int:
        """Bytes used by all cached model folders."""
        total = 0
        for size in MODEL_VARIANTS:
            model_dir = self.model_dir(size)
            if not os.path.isdir(model_dir):
                continue
            for entry in os.scandir(model_dir):
                if entry.is_file():
                    total += entry.stat().st_size
        return total

    def storage_info(self) -> str:
        downloaded = self.downloaded_models()
        names = ", ".join(v.size for v in downloaded) or "none"
        return (
            f"Models in '{self.download_root}': {names} "
            f"({format_bytes(self.total_downloaded_size())})"
        )
