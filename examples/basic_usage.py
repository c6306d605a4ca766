"""Basic usage example for offline-whisper.

This example demonstrates:
1. Downloading a model into the local cache
2. Transcribing an audio file
3. Listening to progress and completion events
4. Recording from the microphone
"""

import logging
import time

from offline_whisper import EventKind, WhisperEngine

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

# =============================================================================
# Example 1: Download and initialize
# =============================================================================
print("=" * 70)
print("Example 1: Download and initialize")
print("=" * 70)

engine = WhisperEngine(model_size="tiny", language="en")
print(engine.model_manager.storage_info())

if not engine.is_model_downloaded():
    future = engine.download_model(
        progress_sink=lambda p: print(f"\r{p.filename}: {p.bytes_received} bytes", end="")
    )
    future.result()
    print()

engine.initialize()

# =============================================================================
# Example 2: Transcribe a file
# =============================================================================
print("=" * 70)
print("Example 2: Transcribe a file")
print("=" * 70)

engine.subscribe(EventKind.PROGRESS, lambda value: print(f"progress: {value:.0%}"))

audio_path = "audio.wav"  # Your audio file here

try:
    result = engine.transcribe_file(audio_path).result()
    print(result)
except FileNotFoundError:
    print(f"Audio file '{audio_path}' not found. Please provide a valid audio file.")

# =============================================================================
# Example 3: Microphone
# =============================================================================
print("=" * 70)
print("Example 3: Record 5 seconds from the microphone")
print("=" * 70)

try:
    engine.start_capture()
    time.sleep(5)
    result = engine.stop_capture_and_transcribe().result()
    print(result)
except Exception as e:
    print(f"Microphone unavailable: {e}")

engine.dispose()
