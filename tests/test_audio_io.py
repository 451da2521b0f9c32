"""
Tests: Audio I/O coordinator (core/audio_io.py)

Workers are real threads; results land on the ManualLoop and are only
delivered after audio.join() + loop.run_pending().
"""

import numpy as np
import pytest

from conftest import BlockingMic, FakeAvatar, FakeMic, FakeSpeaker, silence, tone
from core.audio_io import (
    AudioBusyError,
    AudioIOConfig,
    AudioIOCoordinator,
    NoMeaningfulAudio,
    PlaybackCompleted,
    PlaybackFailed,
    PlaybackInterrupted,
    RecordingComplete,
    RecordingFailed,
)
from core.lip_sync import LipSync
from core.vad import VADConfig
from utils.audio_utils import encode_wav

VAD = VADConfig(silence_threshold=300, min_silence_duration_ms=2000)


def make_audio(loop, mic=None, speaker=None, lip_sync=None, **config):
    return AudioIOCoordinator(
        mic or FakeMic(),
        speaker or FakeSpeaker(),
        loop,
        lip_sync=lip_sync,
        config=AudioIOConfig(**config),
    )


def record(loop, audio, timeout_sec=10.0):
    results = []
    audio.start_recording(VAD, timeout_sec, results.append)
    return results


def finish(loop, audio):
    audio.join()
    loop.run_pending()


def clip_of(samples, sample_rate=16000):
    return encode_wav(np.asarray(samples, dtype="<i2").tobytes(), sample_rate)


# =============================================================================
# Recording
# =============================================================================

def test_recording_stops_on_silence_after_speech(loop):
    mic = FakeMic([tone()] * 10 + [silence()] * 100 + [tone()] * 5)
    audio = make_audio(loop, mic=mic)

    results = record(loop, audio)
    finish(loop, audio)

    assert len(results) == 1
    result = results[0]
    assert isinstance(result, RecordingComplete)
    assert result.stopped_by == "vad"
    assert result.duration_ms == pytest.approx(2200.0)
    assert result.clip[:4] == b"RIFF"
    assert result.path is None
    assert mic.is_running is False
    assert audio.is_recording is False
    # Natural stop cancelled the timeout
    assert loop.pending_timers == []


def test_recording_without_speech_is_not_meaningful(loop):
    audio = make_audio(loop, mic=FakeMic([silence()] * 20))
    results = record(loop, audio)
    finish(loop, audio)
    assert results == [NoMeaningfulAudio("source")]


def test_recording_with_speech_when_source_ends(loop):
    audio = make_audio(loop, mic=FakeMic([tone()] * 20))
    results = record(loop, audio)
    finish(loop, audio)
    assert isinstance(results[0], RecordingComplete)
    assert results[0].stopped_by == "source"


def test_recording_timeout(loop):
    mic = BlockingMic()
    audio = make_audio(loop, mic=mic)
    results = record(loop, audio, timeout_sec=10.0)

    loop.advance(9.0)
    assert audio.is_recording is True

    loop.advance(1.0)
    finish(loop, audio)
    assert results == [NoMeaningfulAudio("timeout")]
    assert mic.stops >= 1


def test_stop_recording(loop):
    audio = make_audio(loop, mic=BlockingMic())
    results = record(loop, audio)
    audio.stop_recording()
    finish(loop, audio)
    assert results == [NoMeaningfulAudio("stop")]


def test_microphone_failure(loop):
    audio = make_audio(loop, mic=FakeMic(fail_on_start=OSError("no device")))
    results = record(loop, audio)
    loop.run_pending()
    assert results == [RecordingFailed("Failed to open microphone: no device")]
    assert audio.is_recording is False


def test_recording_saved_to_directory(loop, tmp_path):
    audio = make_audio(loop, mic=FakeMic([tone()] * 20), recordings_dir=str(tmp_path))
    results = record(loop, audio)
    finish(loop, audio)
    path = results[0].path
    assert path is not None
    assert path.endswith(".wav")
    assert (tmp_path / path.split("/")[-1]).read_bytes() == results[0].clip


def test_second_recording_rejected(loop):
    audio = make_audio(loop, mic=BlockingMic())
    record(loop, audio)
    with pytest.raises(AudioBusyError, match="Already recording"):
        record(loop, audio)
    with pytest.raises(AudioBusyError, match="Already recording"):
        audio.start_playback(clip_of([0] * 100), lambda r: None)
    audio.stop_recording()
    finish(loop, audio)


# =============================================================================
# Playback
# =============================================================================

def test_playback_completes_in_chunks(loop):
    avatar = FakeAvatar()
    speaker = FakeSpeaker()
    audio = make_audio(loop, speaker=speaker, lip_sync=LipSync(avatar.set_mouth_open),
                       playback_chunk_frames=1024)
    results = []

    audio.start_playback(clip_of([5000] * 3000), results.append)
    finish(loop, audio)

    assert results == [PlaybackCompleted()]
    assert speaker.opened_with == 16000
    assert [len(c) for c in speaker.chunks] == [1024, 1024, 952]
    assert speaker.closed == 1
    # Lip sync saw every chunk, then the mouth was closed
    assert len(avatar.mouth) == 4
    assert avatar.mouth[-1] == 0.0
    assert audio.is_playing is False


def test_playback_interrupted(loop):
    speaker = FakeSpeaker(write_delay=0.02)
    audio = make_audio(loop, speaker=speaker, playback_chunk_frames=160)
    results = []

    audio.start_playback(clip_of([1000] * 16000), results.append)
    assert audio.interrupt_playback() is True
    finish(loop, audio)

    assert results == [PlaybackInterrupted()]
    assert len(speaker.chunks) < 100
    assert speaker.closed == 1


def test_interrupt_when_idle(loop):
    assert make_audio(loop).interrupt_playback() is False


def test_playback_failure(loop):
    speaker = FakeSpeaker(fail_on_write=OSError("device lost"))
    audio = make_audio(loop, speaker=speaker)
    results = []
    audio.start_playback(clip_of([1000] * 2000), results.append)
    finish(loop, audio)
    assert results == [PlaybackFailed("Playback error: device lost")]
    assert speaker.closed == 1
    assert audio.is_playing is False


def test_invalid_clip_fails(loop):
    audio = make_audio(loop)
    results = []
    audio.start_playback(b"not a wav file", results.append)
    finish(loop, audio)
    assert isinstance(results[0], PlaybackFailed)


def test_second_playback_rejected(loop):
    audio = make_audio(loop, speaker=FakeSpeaker(write_delay=0.02), playback_chunk_frames=160)
    audio.start_playback(clip_of([1000] * 16000), lambda r: None)
    with pytest.raises(AudioBusyError, match="Already playing audio"):
        audio.start_playback(clip_of([1000] * 100), lambda r: None)
    with pytest.raises(AudioBusyError, match="Already playing audio"):
        record(loop, audio)
    audio.interrupt_playback()
    finish(loop, audio)
