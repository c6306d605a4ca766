"""Fetches model graphs and vocabulary from Hugging Face into the local cache."""

import logging
import os
import threading
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from .constants import DOWNLOAD_TIMEOUT
from .exceptions import AlreadyBusyError, DownloadFailedError, OperationCancelledError
from .models import ModelHandle, ModelManager, format_bytes

logger = logging.getLogger(__name__)

PARTIAL_SUFFIX = ".part"


@dataclass(frozen=True)
class DownloadProgress:
    """Progress of one file transfer.

    Attributes:
        filename: Local file being written
        bytes_received: Bytes written so far
        total_bytes: Content-Length, or None if the server did not send one
    """
    filename: str
    bytes_received: int
    total_bytes: Optional[int] = None

    @property
    def fraction(self) -> Optional[float]:
        if not self.total_bytes:
            return None
        return min(self.bytes_received / self.total_bytes, 1.0)


class ModelDownloader:
    """Streams the graphs and vocabulary of a model variant to disk.

    Files are written to ``<name>.part`` and renamed on success, so a
    cached file is either complete or absent. Only one download runs at
    a time.

    Attributes:
        timeout: Per-request timeout in seconds
        chunk_size: Bytes per streamed chunk
    """

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        timeout: float = DOWNLOAD_TIMEOUT,
        chunk_size: int = 1024 * 1024,
    ):
        if not isinstance(chunk_size, int):
            raise TypeError(f"chunk_size must be int, got {type(chunk_size).__name__}")
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")

        self._client = client
        self.timeout = timeout
        self.chunk_size = chunk_size
        self._lock = threading.Lock()
        self._downloading = False

    @property
    def is_downloading(self) -> bool:
        return self._downloading

    def download(
        self,
        size: str,
        model_manager: ModelManager,
        progress_sink: Optional[Callable[[DownloadProgress], None]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ModelHandle:
        """Download a model variant into the manager's cache.

        Args:
            size: Model size name
            model_manager: Cache the files are written into
            progress_sink: Receives DownloadProgress after each chunk
            cancel_event: Set to abort; checked per chunk

        Returns:
            ModelHandle for the downloaded files

        Raises:
            AlreadyBusyError: If another download is running
            DownloadFailedError: On HTTP, network or disk failure
            OperationCancelledError: If cancel_event was set
        """
        variant = model_manager.get_variant(size)

        with self._lock:
            if self._downloading:
                raise AlreadyBusyError("a model download is already in progress")
            self._downloading = True

        try:
            handle = model_manager.get_handle(size)
            os.makedirs(model_manager.model_dir(size), exist_ok=True)
            logger.info(
                f"Downloading '{variant.name}' (~{variant.readable_size}) "
                f"to '{model_manager.model_dir(size)}'"
            )

            client = self._client or httpx.Client(timeout=self.timeout, follow_redirects=True)
            try:
                for url, path in (
                    (variant.encoder_url, handle.encoder_path),
                    (variant.decoder_url, handle.decoder_path),
                    (variant.vocab_url, handle.vocab_path),
                ):
                    self._fetch(client, url, path, progress_sink, cancel_event)
            finally:
                if self._client is None:
                    client.close()

            logger.info(f"Download of '{variant.name}' complete")
            return handle
        finally:
            with self._lock:
                self._downloading = False

    def _fetch(
        self,
        client: httpx.Client,
        url: str,
        path: str,
        progress_sink: Optional[Callable[[DownloadProgress], None]],
        cancel_event: Optional[threading.Event],
    ) -> None:
        partial = path + PARTIAL_SUFFIX
        received = 0
        try:
            with client.stream("GET", url, follow_redirects=True) as response:
                response.raise_for_status()
                length = response.headers.get("Content-Length")
                total = int(length) if length and length.isdigit() else None

                with open(partial, "wb") as f:
                    for chunk in response.iter_bytes(self.chunk_size):
                        if cancel_event is not None and cancel_event.is_set():
                            raise OperationCancelledError(f"download of '{url}' cancelled")
                        f.write(chunk)
                        received += len(chunk)
                        if progress_sink is not None:
                            progress_sink(DownloadProgress(path, received, total))

            if received == 0:
                raise DownloadFailedError(f"Download of '{url}' returned no data")
            os.replace(partial, path)
        except (DownloadFailedError, OperationCancelledError):
            self._remove_partial(partial)
            raise
        except httpx.HTTPStatusError as e:
            self._remove_partial(partial)
            raise DownloadFailedError(
                f"Download of '{url}' failed with HTTP {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, OSError) as e:
            self._remove_partial(partial)
            raise DownloadFailedError(f"Download of '{url}' failed: {str(e)}") from e
        except Exception:
            self._remove_partial(partial)
            raise

        logger.info(f"Saved '{path}' ({format_bytes(received)})")

    @staticmethod
    def _remove_partial(partial: str) -> None:
        try:
            os.remove(partial)
        except FileNotFoundError:
            pass
