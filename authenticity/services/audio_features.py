"""
Voice print extraction from WAV audio using numpy FFT features.

The print has five parts: a 12-bin chroma profile (tone), low-order
cepstral coefficients (timbre), log band energies (spectral), a syllable
rate (pace) and the 10th-90th percentile pitch range.
"""

import asyncio
import io
import logging
import wave

import numpy as np

from ..errors import InvalidInput
from ..models.domain import VoicePrint
from .detectors import VoicePrintExtractor
from .media_store import MediaStore

logger = logging.getLogger(__name__)

FRAME_SIZE = 1024
HOP_SIZE = 512
BAND_COUNT = 16
CEPSTRAL_COUNT = 12
MIN_PITCH_HZ = 60.0
MAX_PITCH_HZ = 400.0


def read_wav(audio_bytes: bytes) -> tuple[np.ndarray, int]:
    """Decode PCM WAV bytes into a mono float signal in [-1, 1] and its sample rate."""
    try:
        with wave.open(io.BytesIO(audio_bytes), "rb") as wav:
            channels = wav.getnchannels()
            width = wav.getsampwidth()
            rate = wav.getframerate()
            raw = wav.readframes(wav.getnframes())
    except (wave.Error, EOFError) as e:
        raise ValueError(f"Audio is not a readable PCM WAV file: {e}") from e

    dtypes = {1: np.uint8, 2: np.int16, 4: np.int32}
    if width not in dtypes:
        raise ValueError(f"Unsupported sample width: {width} bytes")

    samples = np.frombuffer(raw, dtype=dtypes[width]).astype(np.float64)
    if width == 1:
        samples = samples - 128.0
    samples /= float(2 ** (8 * width - 1))
    if channels > 1:
        samples = samples.reshape(-1, channels).mean(axis=1)
    return samples, rate


def frame_signal(samples: np.ndarray) -> np.ndarray:
    if len(samples) < FRAME_SIZE:
        samples = np.pad(samples, (0, FRAME_SIZE - len(samples)))
    count = 1 + (len(samples) - FRAME_SIZE) // HOP_SIZE
    idx = np.arange(FRAME_SIZE)[None, :] + HOP_SIZE * np.arange(count)[:, None]
    return samples[idx] * np.hanning(FRAME_SIZE)


def band_energies(spectra: np.ndarray, rate: int) -> np.ndarray:
    """Mean log energy in log-spaced bands between 50 Hz and Nyquist."""
    freqs = np.fft.rfftfreq(FRAME_SIZE, 1.0 / rate)
    edges = np.geomspace(50.0, rate / 2.0, BAND_COUNT + 1)
    power = np.mean(spectra ** 2, axis=0)
    energies = []
    for lo, hi in zip(edges[:-1], edges[1:]):
        mask = (freqs >= lo) & (freqs < hi)
        energies.append(np.log1p(power[mask].mean()) if mask.any() else 0.0)
    return np.array(energies)


def cepstrum(spectra: np.ndarray) -> np.ndarray:
    """Average real cepstrum, skipping the energy coefficient."""
    log_mag = np.log(np.mean(spectra, axis=0) + 1e-10)
    ceps = np.fft.irfft(log_mag)
    return np.abs(ceps[1:CEPSTRAL_COUNT + 1])


def chroma(spectra: np.ndarray, rate: int) -> np.ndarray:
    freqs = np.fft.rfftfreq(FRAME_SIZE, 1.0 / rate)
    power = np.mean(spectra ** 2, axis=0)
    valid = freqs > MIN_PITCH_HZ
    pitch_class = np.round(12 * np.log2(freqs[valid] / 440.0)).astype(int) % 12
    profile = np.bincount(pitch_class, weights=power[valid], minlength=12)
    total = profile.sum()
    return profile / total if total > 0 else profile


def frame_pitch(frame: np.ndarray, rate: int) -> float | None:
    """Autocorrelation pitch of one frame, None when unvoiced."""
    corr = np.correlate(frame, frame, mode="full")[len(frame) - 1:]
    if corr[0] <= 0:
        return None
    lo = int(rate / MAX_PITCH_HZ)
    hi = min(int(rate / MIN_PITCH_HZ), len(corr) - 1)
    if hi <= lo:
        return None
    lag = lo + int(np.argmax(corr[lo:hi]))
    if corr[lag] / corr[0] < 0.3:
        return None
    return rate / lag


def syllable_rate(frames: np.ndarray, duration: float) -> float:
    """Energy onsets per second."""
    energy = np.sqrt(np.mean(frames ** 2, axis=1))
    threshold = energy.mean()
    above = energy > threshold
    onsets = np.count_nonzero(above[1:] & ~above[:-1])
    return onsets / duration if duration > 0 else 0.0


def extract_voice_print(audio_bytes: bytes) -> VoicePrint:
    samples, rate = read_wav(audio_bytes)
    duration = len(samples) / rate if rate else 0.0

    frames = frame_signal(samples)
    spectra = np.abs(np.fft.rfft(frames, axis=1))

    pitches = [p for p in (frame_pitch(f, rate) for f in frames) if p is not None]
    if pitches:
        pitch_range = (float(np.percentile(pitches, 10)), float(np.percentile(pitches, 90)))
    else:
        pitch_range = (0.0, 0.0)

    return VoicePrint(
        tone=tuple(float(v) for v in chroma(spectra, rate)),
        timbre=tuple(float(v) for v in cepstrum(spectra)),
        spectral=tuple(float(v) for v in band_energies(spectra, rate)),
        pace=float(syllable_rate(frames, duration)),
        pitch_range=pitch_range,
        duration_seconds=float(duration),
    )


class SpectralVoicePrintExtractor(VoicePrintExtractor):
    """Voice prints from PCM WAV files in the media store."""

    def __init__(self, media_store: MediaStore):
        self.media_store = media_store

    async def extract(self, audio_ref: str) -> VoicePrint:
        audio = await self.media_store.fetch(audio_ref)
        try:
            voice_print = await asyncio.to_thread(extract_voice_print, audio)
        except ValueError as e:
            raise InvalidInput(f"Audio {audio_ref} could not be decoded: {e}") from e
        logger.info(f"Voice print extracted from {audio_ref} ({voice_print.duration_seconds:.1f}s)")
        return voice_print
