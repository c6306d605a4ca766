"""Tests for TranscriptionSession queueing, cancellation and lifecycle."""

import dataclasses
import threading

import numpy as np
import pytest
import soundfile as sf

from conftest import TOKEN_HELLO, FailingBackend, ScriptedBackend
from offline_whisper.audio import AudioNormalizer
from offline_whisper.constants import (
    LANGUAGES,
    NO_SPEECH_TEXT,
    TOKEN_EOT,
    TOKEN_LANGUAGE_START,
)
from offline_whisper.data_models import AudioBuffer
from offline_whisper.events import EventKind
from offline_whisper.exceptions import ErrorKind, ModelLoadFailedError
from offline_whisper.session import JobState, TranscriptionSession


class FlakyBackend(ScriptedBackend):
    """Fails the first decode call, then behaves like ScriptedBackend."""

    def __init__(self, script):
        super().__init__(script)
        self.failed = False

    def decode(self, input_ids, encoder_hidden_states):
        if not self.failed:
            self.failed = True
            raise RuntimeError("transient failure")
        return super().decode(input_ids, encoder_hidden_states)


@pytest.fixture
def make_session(model_handle):
    sessions = []

    def factory(backend, initialize=True, **kwargs):
        session = TranscriptionSession(backend_loader=lambda handle: backend, **kwargs)
        if initialize:
            session.initialize(model_handle)
        sessions.append(session)
        return session

    yield factory
    for session in sessions:
        session.dispose(timeout=1.0)


def record(session, kind):
    received = []
    session.events.subscribe(kind, received.append)
    return received


class TestTranscription:
    """Test end-to-end requests through the worker."""

    def test_success(self, make_session, speech_script, one_second_tone):
        """Test a normal request producing text and events."""
        session = make_session(ScriptedBackend(speech_script))
        progress = record(session, EventKind.PROGRESS)
        completed = record(session, EventKind.COMPLETE)

        result = session.transcribe(one_second_tone).result(timeout=10)

        assert result.succeeded
        assert result.text == "Hello world."
        assert result.detected_language == "en"
        assert 0.0 < result.confidence <= 1.0
        assert result.processing_duration > 0.0
        assert progress == [0.0, 0.2, 0.4, 1.0]
        assert completed == [result]

    def test_on_complete_callback(self, make_session, speech_script, one_second_tone):
        session = make_session(ScriptedBackend(speech_script))
        received = []

        job = session.transcribe(one_second_tone, on_complete=received.append)
        result = job.result(timeout=10)

        assert received == [result]
        assert job.state == JobState.DONE

    def test_silence_reports_no_speech(self, make_session, one_second_tone):
        """Test that an immediate EOT yields the no-speech sentinel."""
        session = make_session(ScriptedBackend([TOKEN_EOT]))

        result = session.transcribe(one_second_tone).result(timeout=10)

        assert result.succeeded
        assert result.text == NO_SPEECH_TEXT
        assert result.no_speech

    def test_zero_frames_skips_encoder(self, make_session):
        """Test that audio shorter than one FFT window never reaches the model."""
        backend = ScriptedBackend([TOKEN_EOT])
        session = make_session(backend, normalizer=AudioNormalizer(min_duration=0.0))

        result = session.transcribe(AudioBuffer(np.ones(100, dtype=np.float32))).result(timeout=10)

        assert result.succeeded
        assert result.text == NO_SPEECH_TEXT
        assert backend.encode_calls == 0

    def test_detected_language(self, make_session, one_second_tone):
        german = TOKEN_LANGUAGE_START + LANGUAGES.index("de")
        session = make_session(ScriptedBackend([german, TOKEN_HELLO, TOKEN_EOT]))

        result = session.transcribe(one_second_tone).result(timeout=10)

        assert result.detected_language == "de"
        assert result.text == "Hello"

    def test_configured_language_reported(self, make_session, speech_script, one_second_tone):
        session = make_session(ScriptedBackend(speech_script), language="es")

        result = session.transcribe(one_second_tone).result(timeout=10)

        assert result.detected_language == "es"

    def test_file_path(self, make_session, speech_script, tmp_path):
        """Test that a file path is loaded on the worker."""
        path = tmp_path / "speech.wav"
        sf.write(str(path), np.full((8000, 2), 0.1, dtype=np.float32), 8000)
        session = make_session(ScriptedBackend(speech_script))

        result = session.transcribe(str(path)).result(timeout=10)

        assert result.succeeded
        assert result.text == "Hello world."

    def test_missing_file_fails(self, make_session, speech_script, tmp_path):
        session = make_session(ScriptedBackend(speech_script))

        result = session.transcribe(str(tmp_path / "gone.wav")).result(timeout=10)

        assert not result.succeeded
        assert result.error_kind == ErrorKind.INVALID_AUDIO_INPUT

    def test_empty_audio_fails(self, make_session, speech_script):
        """Test that empty audio becomes a failed result, not an exception."""
        session = make_session(ScriptedBackend(speech_script))
        errors = record(session, EventKind.ERROR)

        result = session.transcribe(AudioBuffer(np.zeros(0, dtype=np.float32))).result(timeout=10)

        assert not result.succeeded
        assert result.error_kind == ErrorKind.INVALID_AUDIO_INPUT
        assert errors == [result.error_message]

    def test_invalid_audio_type(self, make_session, speech_script):
        session = make_session(ScriptedBackend(speech_script))

        with pytest.raises(TypeError, match="audio must be AudioBuffer or file path"):
            session.transcribe([0.0, 0.1])

    def test_encoder_failure(self, make_session, one_second_tone):
        session = make_session(FailingBackend(fail_on="encode"))

        result = session.transcribe(one_second_tone).result(timeout=10)

        assert result.error_kind == ErrorKind.ENCODE_FAILED

    def test_recovers_after_failure(self, make_session, speech_script, one_second_tone):
        """Test that a decode failure leaves the session usable."""
        session = make_session(FlakyBackend(speech_script))

        first = session.transcribe(one_second_tone).result(timeout=10)
        second = session.transcribe(one_second_tone).result(timeout=10)

        assert first.error_kind == ErrorKind.DECODE_FAILED
        assert "transient failure" in first.error_message
        assert second.succeeded
        assert second.text == "Hello world."

    def test_timeout_then_recover(self, make_session, one_second_tone):
        """Test that a timed-out request fails and the next one succeeds."""
        backend = ScriptedBackend([TOKEN_HELLO], delay=0.05)
        session = make_session(backend, timeout=0.5)

        first = session.transcribe(one_second_tone).result(timeout=10)
        backend.delay = 0.0
        backend.script = [TOKEN_EOT]
        second = session.transcribe(one_second_tone).result(timeout=10)

        assert first.error_kind == ErrorKind.DECODE_FAILED
        assert "timed out" in first.error_message
        assert second.succeeded

    def test_not_initialized(self, make_session, speech_script, one_second_tone):
        session = make_session(ScriptedBackend(speech_script), initialize=False)

        job = session.transcribe(one_second_tone)

        assert job.done()
        assert job.result().error_kind == ErrorKind.MODEL_LOAD_FAILED


class TestQueueing:
    """Test FIFO ordering, busy policy and cancellation."""

    def test_fifo_order(self, make_session, speech_script, one_second_tone):
        """Test that requests complete in submission order."""
        gate = threading.Event()
        backend = ScriptedBackend(speech_script, gate=gate)
        session = make_session(backend)
        order = []

        jobs = [
            session.transcribe(one_second_tone, on_complete=lambda r, i=i: order.append(i))
            for i in range(3)
        ]
        assert backend.decode_started.wait(5)
        assert session.is_busy
        assert session.queue_depth == 2

        gate.set()
        results = [job.result(timeout=10) for job in jobs]

        assert order == [0, 1, 2]
        assert all(r.succeeded for r in results)
        assert [job.job_id for job in jobs] == sorted(job.job_id for job in jobs)

    def test_cancel_pending(self, make_session, speech_script, one_second_tone):
        """Test that a cancelled pending request never completes."""
        gate = threading.Event()
        backend = ScriptedBackend(speech_script, gate=gate)
        session = make_session(backend)
        completed = record(session, EventKind.COMPLETE)
        cancelled = record(session, EventKind.CANCELLED)
        callbacks = []

        first = session.transcribe(one_second_tone)
        assert backend.decode_started.wait(5)
        second = session.transcribe(one_second_tone, on_complete=callbacks.append)

        assert second.cancel()
        assert session.queue_depth == 0
        gate.set()

        assert first.result(timeout=10).succeeded
        assert second.result(timeout=10).error_kind == ErrorKind.CANCELLED
        assert second.cancelled
        assert completed == [first.result()]
        assert cancelled == [second.job_id]
        assert callbacks == []

    def test_cancel_in_flight(self, make_session, one_second_tone):
        """Test that cancelling a running request stops the decode loop."""
        gate = threading.Event()
        backend = ScriptedBackend([TOKEN_HELLO, TOKEN_HELLO, TOKEN_EOT], gate=gate)
        session = make_session(backend)
        completed = record(session, EventKind.COMPLETE)

        job = session.transcribe(one_second_tone)
        assert backend.decode_started.wait(5)
        assert job.cancel()
        gate.set()

        result = job.result(timeout=10)
        assert result.error_kind == ErrorKind.CANCELLED
        assert backend.decode_calls == 1
        assert completed == []

    def test_cancel_finished_job(self, make_session, speech_script, one_second_tone):
        session = make_session(ScriptedBackend(speech_script))
        job = session.transcribe(one_second_tone)
        job.result(timeout=10)

        assert not job.cancel()

    def test_reject_when_busy(self, make_session, speech_script, one_second_tone):
        """Test that the reject policy fails new requests immediately."""
        gate = threading.Event()
        backend = ScriptedBackend(speech_script, gate=gate)
        session = make_session(backend, reject_when_busy=True)

        first = session.transcribe(one_second_tone)
        assert backend.decode_started.wait(5)
        second = session.transcribe(one_second_tone)

        assert second.done()
        assert second.result().error_kind == ErrorKind.ALREADY_BUSY
        gate.set()
        assert first.result(timeout=10).succeeded

    def test_max_pending(self, make_session, speech_script, one_second_tone):
        gate = threading.Event()
        backend = ScriptedBackend(speech_script, gate=gate)
        session = make_session(backend, max_pending=1)

        first = session.transcribe(one_second_tone)
        assert backend.decode_started.wait(5)
        second = session.transcribe(one_second_tone)
        third = session.transcribe(one_second_tone)

        assert third.result(timeout=1).error_kind == ErrorKind.ALREADY_BUSY
        assert "queue is full" in third.result().error_message
        gate.set()
        assert first.result(timeout=10).succeeded
        assert second.result(timeout=10).succeeded


class TestLifecycle:
    """Test initialize and dispose."""

    def test_initialize_idempotent(self, make_session, speech_script, model_handle):
        session = make_session(ScriptedBackend(speech_script))

        session.initialize(model_handle)

        assert session.is_initialized

    def test_initialize_different_model(self, make_session, speech_script, model_handle):
        session = make_session(ScriptedBackend(speech_script))
        other = dataclasses.replace(model_handle, variant="base")

        with pytest.raises(ValueError, match="already initialized"):
            session.initialize(other)

    def test_loader_error_wrapped(self, model_handle):
        def loader(handle):
            raise OSError("disk on fire")

        session = TranscriptionSession(backend_loader=loader)

        with pytest.raises(ModelLoadFailedError, match="disk on fire"):
            session.initialize(model_handle)
        assert not session.is_initialized

    def test_missing_vocab_closes_backend(self, model_handle, speech_script, tmp_path):
        backend = ScriptedBackend(speech_script)
        session = TranscriptionSession(backend_loader=lambda handle: backend)
        handle = dataclasses.replace(model_handle, vocab_path=str(tmp_path / "none.json"))

        with pytest.raises(ModelLoadFailedError):
            session.initialize(handle)
        assert backend.closed
        assert not session.is_initialized

    def test_dispose_twice(self, make_session, speech_script):
        """Test that dispose is idempotent and releases the backend."""
        backend = ScriptedBackend(speech_script)
        session = make_session(backend)

        session.dispose()
        session.dispose()

        assert backend.closed
        assert not session.is_initialized

    def test_dispose_cancels_pending(self, make_session, speech_script, one_second_tone):
        gate = threading.Event()
        backend = ScriptedBackend(speech_script, gate=gate)
        session = make_session(backend)

        first = session.transcribe(one_second_tone)
        assert backend.decode_started.wait(5)
        second = session.transcribe(one_second_tone)
        session.dispose(timeout=0.1)

        assert second.done()
        assert second.result().error_kind == ErrorKind.CANCELLED
        gate.set()
        assert first.result(timeout=10).error_kind == ErrorKind.CANCELLED

    def test_stuck_worker_closes_backend_on_exit(self, make_session, speech_script, one_second_tone):
        """Test that a worker outliving dispose still releases the backend."""
        gate = threading.Event()
        backend = ScriptedBackend(speech_script, gate=gate)
        session = make_session(backend)

        job = session.transcribe(one_second_tone)
        assert backend.decode_started.wait(5)
        session.dispose(timeout=0.1)
        assert not backend.closed

        gate.set()
        assert job.result(timeout=10).error_kind == ErrorKind.CANCELLED
        session._worker.join(5)
        assert backend.closed

    def test_transcribe_after_dispose(self, make_session, speech_script, one_second_tone):
        session = make_session(ScriptedBackend(speech_script))
        session.dispose()

        result = session.transcribe(one_second_tone).result(timeout=1)

        assert result.error_kind == ErrorKind.MODEL_LOAD_FAILED

    def test_initialize_after_dispose(self, make_session, speech_script, model_handle):
        session = make_session(ScriptedBackend(speech_script))
        session.dispose()

        with pytest.raises(RuntimeError, match="disposed"):
            session.initialize(model_handle)

    def test_language_validation(self, make_session, speech_script):
        session = make_session(ScriptedBackend(speech_script))

        session.language = "ja"
        assert session.language == "ja"
        with pytest.raises(ValueError, match="Unsupported language"):
            session.language = "xx"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
