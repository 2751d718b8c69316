"""Acoustic feature extraction: MFCCs, spectral descriptors and chroma.

The extractor turns a decoded buffer into a fixed-shape feature set:

1. Pad or truncate to ``max_length`` samples.
2. Centre-pad by ``n_fft // 2`` and cut frames of ``n_fft`` every ``hop_length``.
3. Window each frame and take its magnitude spectrum.
4. Mel filterbank -> log -> DCT-II, keeping ``n_mfcc`` coefficients.
5. Spectral centroid, rolloff and bandwidth from the same spectrum;
   zero-crossing rate from the time-domain frame.
6. Chroma by folding spectral energy into ``num_chroma_bins`` pitch classes.
"""

from __future__ import annotations

from collections.abc import Callable
from functools import lru_cache

import numpy as np
from scipy import fft as sp_fft
from scipy import signal

from .config import (
    CHROMA_MIN_FREQ_HZ,
    CHROMA_REFERENCE_HZ,
    LOG_AMIN,
    MEL_FMIN_HZ,
    PROGRESS_REPORT_STEPS,
)
from .exceptions import ExtractionError
from .logging_utils import get_logger
from .models import AudioBuffer, AudioFeatures, AudioProcessorConfig, ProgressStage

logger = get_logger(__name__)

# Called with (stage, fraction of stage done, message)
StageReporter = Callable[[ProgressStage, float, str], None]


def hz_to_mel(frequencies: np.ndarray | float) -> np.ndarray:
    """Convert Hz to mels (HTK formula)."""
    return 2595.0 * np.log10(1.0 + np.asarray(frequencies, dtype=np.float64) / 700.0)


def mel_to_hz(mels: np.ndarray | float) -> np.ndarray:
    """Convert mels to Hz (HTK formula)."""
    return 700.0 * (10.0 ** (np.asarray(mels, dtype=np.float64) / 2595.0) - 1.0)


@lru_cache(maxsize=8)
def mel_filterbank(
    sample_rate: int, n_fft: int, n_mels: int, fmin: float = MEL_FMIN_HZ
) -> np.ndarray:
    """
    Build a triangular mel filterbank with area normalisation.

    Args:
        sample_rate: Sample rate in Hz
        n_fft: FFT size
        n_mels: Number of mel bands
        fmin: Lowest filter edge in Hz

    Returns:
        Array of shape (n_mels, n_fft // 2 + 1)
    """
    fmax = sample_rate / 2.0
    fft_freqs = np.fft.rfftfreq(n_fft, d=1.0 / sample_rate)

    # n_mels + 2 edges, evenly spaced on the mel scale
    mel_edges = np.linspace(hz_to_mel(fmin), hz_to_mel(fmax), n_mels + 2)
    hz_edges = mel_to_hz(mel_edges)

    weights = np.zeros((n_mels, fft_freqs.size), dtype=np.float64)
    for band in range(n_mels):
        lower, centre, upper = hz_edges[band : band + 3]
        rising = (fft_freqs - lower) / max(centre - lower, 1e-12)
        falling = (upper - fft_freqs) / max(upper - centre, 1e-12)
        weights[band] = np.maximum(0.0, np.minimum(rising, falling))

    # Each filter integrates to the same energy regardless of its width
    enorm = 2.0 / (hz_edges[2 : n_mels + 2] - hz_edges[:n_mels])
    weights *= enorm[:, np.newaxis]

    weights.setflags(write=False)
    return weights


@lru_cache(maxsize=8)
def chroma_filterbank(sample_rate: int, n_fft: int, num_chroma_bins: int) -> np.ndarray:
    """
    Build a binary map from FFT bins to pitch classes.

    Each bin at or above CHROMA_MIN_FREQ_HZ is assigned to the nearest pitch
    class, with class 0 anchored at C.

    Args:
        sample_rate: Sample rate in Hz
        n_fft: FFT size
        num_chroma_bins: Pitch classes per octave

    Returns:
        Array of shape (num_chroma_bins, n_fft // 2 + 1)
    """
    fft_freqs = np.fft.rfftfreq(n_fft, d=1.0 / sample_rate)
    weights = np.zeros((num_chroma_bins, fft_freqs.size), dtype=np.float64)

    audible = fft_freqs >= CHROMA_MIN_FREQ_HZ
    pitch = num_chroma_bins * np.log2(fft_freqs[audible] / CHROMA_REFERENCE_HZ)
    pitch_class = np.mod(np.round(pitch).astype(np.int64), num_chroma_bins)
    weights[pitch_class, np.flatnonzero(audible)] = 1.0

    weights.setflags(write=False)
    return weights


class FeatureExtractor:
    """Computes the fixed-shape feature set the classifier expects."""

    def __init__(self, config: AudioProcessorConfig | None = None) -> None:
        """
        Initialize the extractor.

        Args:
            config: Extraction settings; defaults when omitted
        """
        self.config = config or AudioProcessorConfig()
        self._window = signal.get_window(self.config.window, self.config.n_fft, fftbins=True)
        self._fft_freqs = np.fft.rfftfreq(self.config.n_fft, d=1.0 / self.config.sample_rate)
        self._mel_basis = mel_filterbank(
            self.config.sample_rate, self.config.n_fft, self.config.n_mels
        )
        self._chroma_basis = chroma_filterbank(
            self.config.sample_rate, self.config.n_fft, self.config.num_chroma_bins
        )

    def fix_length(self, samples: np.ndarray) -> np.ndarray:
        """Truncate or zero-pad to exactly `max_length` samples."""
        max_length = self.config.max_length
        samples = np.asarray(samples, dtype=np.float64).ravel()
        if samples.size >= max_length:
            return samples[:max_length].copy()
        return np.pad(samples, (0, max_length - samples.size))

    def frame_signal(self, samples: np.ndarray) -> np.ndarray:
        """
        Centre-pad and cut the signal into overlapping frames.

        Args:
            samples: Fixed-length signal

        Returns:
            Array of shape (n_frames, n_fft)
        """
        n_fft = self.config.n_fft
        hop = self.config.hop_length
        padded = np.pad(samples, (n_fft // 2, n_fft // 2))
        n_frames = 1 + (padded.size - n_fft) // hop
        if n_frames <= 0:
            raise ExtractionError("Signal too short to frame")
        starts = np.arange(n_frames) * hop
        return padded[starts[:, np.newaxis] + np.arange(n_fft)]

    def extract(
        self, buffer: AudioBuffer, report: StageReporter | None = None
    ) -> AudioFeatures:
        """
        Extract features from a decoded buffer.

        Args:
            buffer: Decoded audio at the configured sample rate
            report: Optional progress callback

        Returns:
            AudioFeatures whose per-frame sequences share one frame count

        Raises:
            ExtractionError: If the buffer is unusable or any frame's spectrum
                is empty or not finite; no partial features are returned
        """
        cfg = self.config
        if buffer.sample_rate != cfg.sample_rate:
            raise ExtractionError(
                f"Buffer sample rate {buffer.sample_rate}Hz does not match "
                f"configured {cfg.sample_rate}Hz"
            )
        if buffer.samples.size == 0:
            raise ExtractionError("Cannot extract features from an empty buffer")

        def notify(stage: ProgressStage, fraction: float, message: str) -> None:
            if report is not None:
                report(stage, fraction, message)

        notify(ProgressStage.PREPROCESSING, 0.0, "Normalising audio length")
        samples = self.fix_length(buffer.samples)
        notify(ProgressStage.PREPROCESSING, 0.5, "Framing signal")
        frames = self.frame_signal(samples)
        n_frames = frames.shape[0]
        notify(ProgressStage.PREPROCESSING, 1.0, f"Prepared {n_frames} frames")

        mfccs = np.empty((n_frames, cfg.n_mfcc), dtype=np.float64)
        centroid = np.empty(n_frames, dtype=np.float64)
        zcr = np.empty(n_frames, dtype=np.float64)
        rolloff = np.empty(n_frames, dtype=np.float64)
        bandwidth = np.empty(n_frames, dtype=np.float64)
        chroma = np.empty((n_frames, cfg.num_chroma_bins), dtype=np.float64)

        report_every = max(1, n_frames // PROGRESS_REPORT_STEPS)
        notify(ProgressStage.EXTRACTING, 0.0, "Extracting features")

        for index in range(n_frames):
            frame = frames[index]
            spectrum = np.abs(np.fft.rfft(frame * self._window, n=cfg.n_fft))
            if spectrum.size == 0 or not np.all(np.isfinite(spectrum)):
                raise ExtractionError(f"Malformed spectrum at frame {index}")
            power = spectrum**2

            mfccs[index] = self._mfcc(power)
            centroid[index], bandwidth[index] = self._centroid_bandwidth(spectrum)
            rolloff[index] = self._rolloff(power)
            zcr[index] = self._zero_crossing_rate(frame)
            chroma[index] = self._chroma(power)

            done = index + 1
            if done % report_every == 0 or done == n_frames:
                notify(
                    ProgressStage.EXTRACTING,
                    done / n_frames,
                    f"Extracted {done}/{n_frames} frames",
                )

        features = AudioFeatures(
            mfccs=mfccs,
            spectral_centroid=centroid,
            zero_crossing_rate=zcr,
            spectral_rolloff=rolloff,
            spectral_bandwidth=bandwidth,
            chroma=chroma,
        )
        self.check_features(features)
        logger.debug(f"Extracted features for {n_frames} frames")
        return features

    def check_features(self, features: AudioFeatures) -> None:
        """
        Verify the feature shape and finiteness.

        Raises:
            ExtractionError: If shapes disagree or any value is not finite
        """
        cfg = self.config
        n_frames = features.n_frames
        if features.mfccs.shape != (n_frames, cfg.n_mfcc):
            raise ExtractionError(f"MFCC shape {features.mfccs.shape} is malformed")
        if features.chroma.shape != (n_frames, cfg.num_chroma_bins):
            raise ExtractionError(f"Chroma shape {features.chroma.shape} is malformed")
        for name in (
            "spectral_centroid",
            "zero_crossing_rate",
            "spectral_rolloff",
            "spectral_bandwidth",
        ):
            if getattr(features, name).shape != (n_frames,):
                raise ExtractionError(f"{name} frame count does not match MFCCs")

        matrix = features.to_matrix()
        if not np.all(np.isfinite(matrix)):
            raise ExtractionError("Extracted features contain non-finite values")

    def _mfcc(self, power: np.ndarray) -> np.ndarray:
        mel_energy = self._mel_basis @ power
        log_mel = np.log(np.maximum(mel_energy, LOG_AMIN))
        return sp_fft.dct(log_mel, type=2, norm="ortho")[: self.config.n_mfcc]

    def _centroid_bandwidth(self, magnitude: np.ndarray) -> tuple[float, float]:
        total = magnitude.sum()
        if total <= 0.0:
            return 0.0, 0.0
        centroid = float(np.dot(self._fft_freqs, magnitude) / total)
        spread = np.dot(magnitude, (self._fft_freqs - centroid) ** 2) / total
        return centroid, float(np.sqrt(spread))

    def _rolloff(self, power: np.ndarray) -> float:
        total = power.sum()
        if total <= 0.0:
            return 0.0
        cumulative = np.cumsum(power)
        index = int(np.searchsorted(cumulative, self.config.rolloff_percent * total))
        return float(self._fft_freqs[min(index, self._fft_freqs.size - 1)])

    def _zero_crossing_rate(self, frame: np.ndarray) -> float:
        if frame.size < 2:
            return 0.0
        signs = np.signbit(frame)
        return float(np.count_nonzero(signs[1:] != signs[:-1]) / (frame.size - 1))

    def _chroma(self, power: np.ndarray) -> np.ndarray:
        energy = self._chroma_basis @ power
        peak = energy.max()
        if peak <= 0.0:
            return np.zeros_like(energy)
        return energy / peak
