"""Speaker gender estimation from voice pitch."""

import logging
from typing import Optional

import numpy as np

from .error_handler import VideoTranslatorError
from .media_shell import SPEECH_SAMPLE_RATE, MediaShell
from ..models.core import Gender

logger = logging.getLogger(__name__)


class SpeakerAnalyzer:
    """Estimates speaker gender from the median fundamental frequency."""

    FEMALE_THRESHOLD_HZ = 165.0
    MIN_PITCH_HZ = 60.0
    MAX_PITCH_HZ = 400.0

    def __init__(
        self,
        media_shell: MediaShell,
        sample_rate: int = SPEECH_SAMPLE_RATE,
        min_voiced_frames: int = 5,
        voicing_threshold: float = 0.3
    ):
        self.media_shell = media_shell
        self.sample_rate = sample_rate
        self.min_voiced_frames = min_voiced_frames
        self.voicing_threshold = voicing_threshold

    def estimate_gender(self, audio_path: str) -> Gender:
        """Classify the dominant speaker of an audio file.

        Returns:
            Gender.UNKNOWN when the audio cannot be decoded or has too little
            voiced speech
        """
        try:
            samples = self.media_shell.read_pcm(audio_path, self.sample_rate)
        except VideoTranslatorError as e:
            logger.warning(f"Could not decode {audio_path} for pitch analysis: {e}")
            return Gender.UNKNOWN

        pitch = self.estimate_pitch(samples)
        if pitch is None:
            return Gender.UNKNOWN
        gender = Gender.FEMALE if pitch >= self.FEMALE_THRESHOLD_HZ else Gender.MALE
        logger.debug(f"Median pitch {pitch:.0f} Hz -> {gender.value}")
        return gender

    def estimate_pitch(self, samples: np.ndarray) -> Optional[float]:
        """Median F0 in Hz over voiced frames, or None if too few are voiced."""
        frame_size = int(0.04 * self.sample_rate)
        hop = int(0.02 * self.sample_rate)
        min_lag = int(self.sample_rate / self.MAX_PITCH_HZ)
        max_lag = min(int(self.sample_rate / self.MIN_PITCH_HZ), frame_size - 1)

        signal = np.asarray(samples, dtype=np.float64) / 32768.0
        if signal.size < frame_size:
            return None

        frames = np.lib.stride_tricks.sliding_window_view(signal, frame_size)[::hop]
        frames = frames - frames.mean(axis=1, keepdims=True)
        rms = np.sqrt(np.mean(frames ** 2, axis=1))
        loud = rms >= max(0.01, 0.1 * float(rms.max()))
        frames = frames[loud]
        if frames.shape[0] < self.min_voiced_frames:
            return None

        # Autocorrelation through the power spectrum
        spectrum = np.fft.rfft(frames, n=2 * frame_size, axis=1)
        autocorr = np.fft.irfft(np.abs(spectrum) ** 2, axis=1)[:, :frame_size]
        energy = autocorr[:, :1]
        autocorr = autocorr / np.where(energy > 0, energy, 1.0)

        window = autocorr[:, min_lag:max_lag + 1]
        peak_lags = np.argmax(window, axis=1)
        peak_values = window[np.arange(window.shape[0]), peak_lags]
        voiced = peak_values >= self.voicing_threshold
        if int(voiced.sum()) < self.min_voiced_frames:
            return None

        pitches = self.sample_rate / (peak_lags[voiced] + min_lag)
        return float(np.median(pitches))
