"""Tests for WAV decoding and voice print extraction."""

import io
import wave

import numpy as np
import pytest

from authenticity.errors import CalibrationTooShort, InvalidInput
from authenticity.services.audio_features import (
    SpectralVoicePrintExtractor, extract_voice_print, frame_pitch, read_wav,
)
from authenticity.services.media_store import MediaStore
from fakes import make_pipeline

RATE = 16000


def _tone(freq=220.0, seconds=2.0, channels=1, width=2) -> bytes:
    t = np.arange(int(RATE * seconds)) / RATE
    signal = 0.5 * np.sin(2 * np.pi * freq * t)
    if width == 2:
        pcm = (signal * 32767).astype(np.int16)
    else:
        pcm = (signal * 2147483647).astype(np.int32)
    if channels == 2:
        pcm = np.repeat(pcm, 2)

    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(channels)
        wav.setsampwidth(width)
        wav.setframerate(RATE)
        wav.writeframes(pcm.tobytes())
    return buffer.getvalue()


class TestReadWav:
    def test_mono(self):
        samples, rate = read_wav(_tone())
        assert rate == RATE
        assert len(samples) == 2 * RATE
        assert np.max(np.abs(samples)) == pytest.approx(0.5, abs=0.01)

    def test_stereo_is_mixed_down(self):
        samples, _ = read_wav(_tone(channels=2))
        assert len(samples) == 2 * RATE

    def test_32_bit(self):
        samples, _ = read_wav(_tone(width=4))
        assert np.max(np.abs(samples)) == pytest.approx(0.5, abs=0.01)

    def test_garbage_bytes(self):
        with pytest.raises(ValueError):
            read_wav(b"not a wav")

    def test_unsupported_width(self):
        buffer = io.BytesIO()
        with wave.open(buffer, "wb") as wav:
            wav.setnchannels(1)
            wav.setsampwidth(3)
            wav.setframerate(RATE)
            wav.writeframes(b"\x00" * 300)
        with pytest.raises(ValueError):
            read_wav(buffer.getvalue())


class TestVoicePrint:
    def test_pure_tone(self):
        voice_print = extract_voice_print(_tone(220.0))

        assert voice_print.duration_seconds == pytest.approx(2.0)
        low, high = voice_print.pitch_range
        assert low == pytest.approx(220.0, rel=0.05)
        assert high == pytest.approx(220.0, rel=0.05)
        # 220 Hz is an A
        assert int(np.argmax(voice_print.tone)) == 0
        assert len(voice_print.tone) == 12
        assert len(voice_print.timbre) == 12
        assert len(voice_print.spectral) == 16

    def test_silence_has_no_pitch(self):
        assert frame_pitch(np.zeros(1024), RATE) is None

    @pytest.mark.asyncio
    async def test_extractor_reads_from_store(self, tmp_path):
        (tmp_path / "calib.wav").write_bytes(_tone(150.0, seconds=1.0))
        extractor = SpectralVoicePrintExtractor(MediaStore(connection_string="", local_dir=str(tmp_path)))

        voice_print = await extractor.extract("calib.wav")
        assert voice_print.duration_seconds == pytest.approx(1.0)
        assert voice_print.pitch_range[0] == pytest.approx(150.0, rel=0.05)

    @pytest.mark.asyncio
    async def test_undecodable_audio_is_invalid_input(self, tmp_path):
        (tmp_path / "calib.wav").write_bytes(b"not a wav file at all")
        extractor = SpectralVoicePrintExtractor(MediaStore(connection_string="", local_dir=str(tmp_path)))

        with pytest.raises(InvalidInput):
            await extractor.extract("calib.wav")

    @pytest.mark.asyncio
    async def test_enrollment_checks_the_decoded_length(self, tmp_path):
        (tmp_path / "calib.wav").write_bytes(_tone(150.0, seconds=1.0))
        store = MediaStore(connection_string="", local_dir=str(tmp_path))
        pipeline = make_pipeline(voice_extractor=SpectralVoicePrintExtractor(store))

        with pytest.raises(CalibrationTooShort):
            await pipeline.voice.enroll("alice", "calib.wav", 30.0)
        assert await pipeline.voice.signatures.get_latest("alice") is None
