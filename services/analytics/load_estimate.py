"""Per-activity training load when the upstream record doesn't carry one."""
from __future__ import annotations

from typing import List, Optional, Sequence

import packages.config as config

from .models import ActivityRecord, numeric_samples

NP_WINDOW_S = 30


def rolling_average(values: Sequence[float], window: int) -> List[float]:
    out: List[float] = []
    total = 0.0
    for i, v in enumerate(values):
        total += v
        if i >= window:
            total -= values[i - window]
        if i >= window - 1:
            out.append(total / window)
    return out


def normalized_power(power: Sequence[Optional[float]], window: int = NP_WINDOW_S) -> Optional[float]:
    """Fourth root of the mean fourth power of the 30 s rolling average.

    Streams shorter than the window fall back to a single window over the
    whole stream; fewer than 3 usable samples yields None.
    """
    samples = [v for v in numeric_samples(power) if v >= 0]
    if len(samples) < 3:
        return None
    window = min(window, len(samples))
    rolled = rolling_average(samples, window)
    fourth = sum(v ** 4 for v in rolled) / len(rolled)
    return fourth ** 0.25


def power_tss(duration_s: float, power_w: float, ftp_w: float) -> float:
    if ftp_w <= 0 or duration_s <= 0:
        return 0.0
    intensity = power_w / ftp_w
    return duration_s / 3600.0 * intensity * intensity * 100.0


def duration_tss(duration_s: float, intensity: float) -> float:
    if duration_s <= 0:
        return 0.0
    return duration_s / 3600.0 * intensity * intensity * 100.0


def estimate_load(
    activity: ActivityRecord,
    ftp_w: Optional[float] = None,
    fallback_intensity: Optional[float] = None,
) -> float:
    if activity.load is not None:
        return float(activity.load)
    ftp_w = config.FTP_W if ftp_w is None else ftp_w
    fallback_intensity = config.FALLBACK_INTENSITY if fallback_intensity is None else fallback_intensity
    duration = float(activity.duration_s or 0.0)

    np_w = normalized_power(activity.stream("power")) if activity.has_stream("power") else None
    if np_w:
        return power_tss(duration, np_w, ftp_w)
    if activity.avg_power:
        return power_tss(duration, float(activity.avg_power), ftp_w)
    return duration_tss(duration, fallback_intensity)
