"""
Confidence Calibration

Turns matcher and cross-scorer signals into a calibrated confidence.

Fast path (no cross group matched):
    one system + domain   -> 0.85
    one system            -> 0.70
    two or more systems   -> 0.60

Weighted path (cross groups matched):
    one system   -> clamp(0.70 + (dominance - 0.5) * 0.40 + 0.10 * has_domain)
    two or more  -> min(0.60 + gap * 0.30, 0.69)

Multi-system confidence stays below 0.70 so consumers can read 0.70 as the
boundary between "confident single system" and "ambiguous". Live scoring
never reaches 1.0; that value belongs to pattern-cache hits.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

PRECISION = 4


@dataclass(frozen=True)
class CalibrationSettings:
    """Calibration constants (defaults match DEFAULT_CONFIG['calibration'])."""

    single_with_subdomain: float = 0.85
    single: float = 0.70
    multi: float = 0.60
    weighted_single_base: float = 0.70
    dominance_slope: float = 0.40
    subdomain_bonus: float = 0.10
    weighted_multi_base: float = 0.60
    gap_slope: float = 0.30
    multi_ceiling: float = 0.69
    live_ceiling: float = 0.99
    reconstruction_gap: float = 0.3

    @classmethod
    def from_config(cls, section: Optional[Dict[str, Any]]) -> "CalibrationSettings":
        section = section or {}
        known = cls.__dataclass_fields__
        return cls(**{k: float(v) for k, v in section.items() if k in known})


class ConfidenceCalibrator:
    """Pure confidence formulas. Out-of-range values are clamped and logged."""

    def __init__(self, settings: Optional[CalibrationSettings] = None):
        self.settings = settings or CalibrationSettings()

    def compute_confidence(
        self,
        total_binary_matches: int,
        has_subdomain: bool,
        phase2_active: bool = False,
        gap: float = 0.0,
        dominance: float = 0.0,
        final_system_count: Optional[int] = None,
    ) -> float:
        """
        Compute the confidence of a live classification.

        Args:
            total_binary_matches: Systems hit by the binary matcher
            has_subdomain: Whether a domain was detected
            phase2_active: Whether any cross group matched
            gap: Cross-score gap between the top two systems
            dominance: Cross-score dominance of the top system
            final_system_count: Size of the final system set (defaults to
                total_binary_matches; differs after reconstruction)

        Returns:
            Confidence in [0, live_ceiling], rounded to 4 places
        """
        s = self.settings
        count = total_binary_matches if final_system_count is None else final_system_count

        if not phase2_active:
            if total_binary_matches == 0:
                return 0.0
            if total_binary_matches == 1:
                raw = s.single_with_subdomain if has_subdomain else s.single
            else:
                raw = s.multi
        elif count == 0:
            return 0.0
        elif count == 1:
            raw = s.weighted_single_base + (dominance - 0.5) * s.dominance_slope
            if has_subdomain:
                raw += s.subdomain_bonus
            raw = max(0.0, min(raw, 1.0))
        else:
            raw = min(s.weighted_multi_base + gap * s.gap_slope, s.multi_ceiling)

        return self._finalize(raw)

    def apply_boost(self, confidence: float, boost: float, system_count: int) -> float:
        """
        Add a session prior boost to a confidence.

        A zero confidence is never lifted. Multi-system results stay under the
        multi ceiling.
        """
        if confidence <= 0.0 or boost <= 0.0:
            return confidence
        ceiling = self.settings.multi_ceiling if system_count >= 2 else self.settings.live_ceiling
        return self._finalize(min(confidence + boost, max(confidence, ceiling)))

    def _finalize(self, value: float) -> float:
        if value < 0.0 or value > 1.0:
            logger.warning(f"Confidence out of range, clamping: {value}")
            value = max(0.0, min(value, 1.0))
        value = round(value, PRECISION)
        if value > self.settings.live_ceiling:
            value = self.settings.live_ceiling
        return value
