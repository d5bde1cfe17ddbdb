"""Feature engineering — gait descriptors from a window of 6-axis samples.

This module transforms a window of :class:`SensorSample` objects into a
:class:`GaitFeatureVector` suitable for baseline building and matching.

Key responsibilities
--------------------
1. **Step frequency** — dominant cadence from the overlap-normalised
   autocorrelation of the acceleration magnitude.
2. **Rhythm** — autocorrelation peak height (step regularity) and the
   variance of peak-to-peak intervals.
3. **Intensity** — per-axis RMS, signal magnitude area, magnitude
   spread of acceleration and angular velocity.
4. **Spectrum** — energy fractions of the acceleration magnitude in fixed
   frequency bands.

The extractor is deterministic: the same samples and configuration always
produce the same vector.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass, field

import numpy as np
import structlog
from scipy.signal import find_peaks

from gait_auth.errors import InsufficientDataError, InsufficientSignalError
from gait_auth.models import GaitFeatureVector, SensorSample

logger = structlog.get_logger(__name__)

# ── Constants ─────────────────────────────────────────────────

_DEFAULT_BANDS: tuple[tuple[float, float], ...] = (
    (0.5, 1.5),
    (1.5, 2.5),
    (2.5, 3.5),
    (3.5, 5.0),
)

# Below this variance the magnitude is treated as flat (no motion).
_FLAT_VARIANCE = 1e-12

# Shorter-lag peaks within this fraction of the best one win, so a
# two-step (stride) repetition is not mistaken for the step period.
_HARMONIC_TOLERANCE = 0.85

_CORE_FEATURES = (
    "step_frequency_hz",
    "step_regularity",
    "stride_interval_variance",
    "acc_rms_x",
    "acc_rms_y",
    "acc_rms_z",
    "gyro_rms_x",
    "gyro_rms_y",
    "gyro_rms_z",
    "signal_magnitude_area",
    "acc_magnitude_std",
    "gyro_magnitude_mean",
)


def _band_name(low: float, high: float) -> str:
    return f"band_energy_{low:.1f}_{high:.1f}hz".replace(".", "_")


def feature_names(bands: Iterable[tuple[float, float]] = _DEFAULT_BANDS) -> tuple[str, ...]:
    """Ordered feature names for the given spectral band layout."""
    return _CORE_FEATURES + tuple(_band_name(lo, hi) for lo, hi in bands)


FEATURE_NAMES: tuple[str, ...] = feature_names()


@dataclass(frozen=True, slots=True)
class FeatureConfig:
    """Extraction parameters.  Vectors are comparable only under equal configs."""

    sampling_rate_hz: float = 50.0
    window_size: int = 100
    min_samples: int = 20
    cadence_min_hz: float = 0.5
    cadence_max_hz: float = 3.5
    min_autocorr_peak: float = 0.3
    spectral_bands: tuple[tuple[float, float], ...] = field(default=_DEFAULT_BANDS)

    def __post_init__(self) -> None:
        if self.min_samples > self.window_size:
            raise ValueError(
                f"min_samples ({self.min_samples}) exceeds window_size ({self.window_size})"
            )

    @classmethod
    def from_settings(cls, settings) -> FeatureConfig:  # noqa: ANN001
        return cls(
            sampling_rate_hz=settings.sampling_rate_hz,
            window_size=settings.feature_window_size,
            min_samples=settings.min_feature_samples,
            cadence_min_hz=settings.cadence_min_hz,
            cadence_max_hz=settings.cadence_max_hz,
            min_autocorr_peak=settings.min_autocorr_peak,
        )

    @property
    def names(self) -> tuple[str, ...]:
        return feature_names(self.spectral_bands)


# ── Signal helpers ────────────────────────────────────────────


def autocorrelation(signal: np.ndarray) -> np.ndarray:
    """Overlap-normalised autocorrelation for lags ``0..n-1``.

    Each lag is normalised by the energy of the two overlapping segments::

        r[k] = Σ x[i]·x[i+k] / sqrt(Σ_{i<n-k} x[i]² · Σ_{i>=k} x[i]²)

    so ``r[0] == 1``, ``|r[k]| <= 1`` and an exactly periodic signal
    scores 1 at its period regardless of how short the overlap is.
    """
    n = len(signal)
    if float(np.dot(signal, signal)) / n < _FLAT_VARIANCE:
        raise InsufficientSignalError("flat acceleration magnitude")

    cross = np.correlate(signal, signal, mode="full")[n - 1:]
    cumulative = np.cumsum(signal ** 2)
    lags = np.arange(n)
    head = cumulative[n - lags - 1]
    tail = cumulative[-1] - np.concatenate(([0.0], cumulative[:-1]))
    denom = np.sqrt(head * tail)
    return np.divide(cross, denom, out=np.zeros(n), where=denom > 0)


def dominant_lag(
    r: np.ndarray,
    min_lag: int,
    max_lag: int,
    min_peak: float,
) -> tuple[float, float]:
    """Locate the step period in an autocorrelation sequence.

    Returns ``(lag, peak)`` where *lag* is refined by parabolic
    interpolation.  Raises :class:`InsufficientSignalError` when no local
    maximum in ``[min_lag, max_lag]`` reaches *min_peak*.
    """
    last = len(r) - 1
    candidates: list[int] = []
    for k in range(max(min_lag, 1), min(max_lag, last - 1) + 1):
        if r[k] >= r[k - 1] and r[k] >= r[k + 1] and r[k] >= min_peak:
            candidates.append(k)
    if not candidates:
        raise InsufficientSignalError("no autocorrelation peak within the cadence band")

    best = max(r[k] for k in candidates)
    k = next(c for c in candidates if r[c] >= _HARMONIC_TOLERANCE * best)

    left, centre, right = r[k - 1], r[k], r[k + 1]
    denom = left - 2.0 * centre + right
    offset = 0.5 * (left - right) / denom if denom != 0 else 0.0
    return k + float(offset), float(centre)


def band_energy_fractions(
    signal: np.ndarray,
    sampling_rate_hz: float,
    bands: Iterable[tuple[float, float]],
) -> list[float]:
    """Fraction of non-DC spectral energy falling in each ``[low, high)`` band."""
    power = np.abs(np.fft.rfft(signal)) ** 2
    freqs = np.fft.rfftfreq(len(signal), d=1.0 / sampling_rate_hz)
    total = float(power[1:].sum())
    if total <= 0:
        return [0.0 for _ in bands]
    return [float(power[(freqs >= lo) & (freqs < hi)].sum()) / total for lo, hi in bands]


def _rms(values: np.ndarray) -> np.ndarray:
    return np.sqrt((values ** 2).mean(axis=0))


# ── Extractor ─────────────────────────────────────────────────


class FeatureExtractor:
    """Pure function object: window of samples → :class:`GaitFeatureVector`."""

    def __init__(self, config: FeatureConfig | None = None) -> None:
        self.config = config or FeatureConfig()

    def extract(self, samples: Iterable[SensorSample]) -> GaitFeatureVector:
        """Compute the gait feature vector of one window.

        Parameters
        ----------
        samples : Iterable[SensorSample]
            Window contents in timestamp order.  Unsynchronized samples are
            ignored; the vector's ``window_size`` is the number of
            synchronized samples analysed.

        Raises
        ------
        InsufficientDataError
            Fewer than ``min_samples`` synchronized samples.
        InsufficientSignalError
            No plausible gait cycle (flat signal or no cadence peak).
        """
        cfg = self.config
        synced = [s for s in samples if s.synchronized]
        if len(synced) < cfg.min_samples:
            raise InsufficientDataError(
                f"need at least {cfg.min_samples} synchronized samples, got {len(synced)}",
                available=len(synced),
                required=cfg.min_samples,
            )

        fs = cfg.sampling_rate_hz
        data = np.array(
            [(s.ax, s.ay, s.az, s.gx, s.gy, s.gz) for s in synced],
            dtype=np.float64,
        )
        acc, gyro = data[:, :3], data[:, 3:]
        n = len(data)

        acc_mag = np.sqrt((acc ** 2).sum(axis=1))
        acc_mag_c = acc_mag - acc_mag.mean()
        acc_c = acc - acc.mean(axis=0)
        gyro_c = gyro - gyro.mean(axis=0)
        gyro_mag = np.sqrt((gyro ** 2).sum(axis=1))

        # Step period
        r = autocorrelation(acc_mag_c)
        min_lag = math.ceil(fs / cfg.cadence_max_hz)
        max_lag = min(math.floor(fs / cfg.cadence_min_hz), n // 2)
        lag, regularity = dominant_lag(r, min_lag, max_lag, cfg.min_autocorr_peak)
        step_frequency = fs / lag

        # Stride rhythm
        peaks, _ = find_peaks(acc_mag_c, distance=max(1, int(lag / 2)))
        intervals = np.diff(peaks) / fs
        stride_variance = float(np.var(intervals)) if len(intervals) >= 2 else 0.0

        acc_rms = _rms(acc_c)
        gyro_rms = _rms(gyro_c)
        sma = float(np.abs(acc_c).sum(axis=1).mean())
        bands = band_energy_fractions(acc_mag_c, fs, cfg.spectral_bands)

        values = [
            float(step_frequency),
            float(regularity),
            stride_variance,
            *(float(v) for v in acc_rms),
            *(float(v) for v in gyro_rms),
            sma,
            float(acc_mag.std()),
            float(gyro_mag.mean()),
            *bands,
        ]

        logger.debug(
            "feature_extractor.extracted",
            samples=n,
            step_frequency_hz=round(step_frequency, 3),
            regularity=round(float(regularity), 3),
        )
        # Labelled with the count actually analysed, not the configured
        # window, so vectors over different spans never compare equal.
        return GaitFeatureVector(
            names=cfg.names,
            values=tuple(values),
            window_size=n,
            sampling_rate_hz=fs,
        )
