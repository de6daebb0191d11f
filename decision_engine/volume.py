"""
Volume Policy

Maps relative volume (last bar vs its trailing average) onto a participation
regime and the confirmation it calls for.
"""

import math
from dataclasses import dataclass, asdict
from typing import Optional, List, Sequence, Dict, Any

from .models import Bar


@dataclass(frozen=True)
class VolumePolicy:
    regime: str
    confirm_bars_required: int
    allow_one_bar_breakout: bool
    requires_retest: bool
    size_mult: float
    label: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


NORMAL_VOLUME_POLICY = VolumePolicy("NORMAL", 2, True, False, 1.0, "NORMAL")
THIN_TAPE_POLICY = VolumePolicy("THIN_TAPE", 3, False, True, 0.25, "THIN")
LOW_VOL_POLICY = VolumePolicy("LOW_VOL", 2, False, False, 0.5, "LOW")
VOL_SPIKE_POLICY = VolumePolicy("VOL_SPIKE", 1, True, False, 1.25, "SPIKE")
CLIMAX_VOL_POLICY = VolumePolicy("CLIMAX_VOL", 1, True, False, 1.25, "CLIMAX")


def relative_volume(bars: Sequence[Bar], period: int = 20) -> Optional[float]:
    """Last bar volume over the average of the `period` bars before it."""
    if len(bars) < period + 1:
        return None
    window = bars[-(period + 1):-1]
    avg = sum(b.volume for b in window) / period
    if avg <= 0:
        return None
    return bars[-1].volume / avg


def volume_policy(rel_vol: Optional[float]) -> VolumePolicy:
    if rel_vol is None or not math.isfinite(rel_vol):
        return NORMAL_VOLUME_POLICY
    if rel_vol < 0.45:
        return THIN_TAPE_POLICY
    if rel_vol < 0.7:
        return LOW_VOL_POLICY
    if rel_vol >= 2.5:
        return CLIMAX_VOL_POLICY
    if rel_vol >= 1.5:
        return VOL_SPIKE_POLICY
    return NORMAL_VOLUME_POLICY


def volume_warnings(policy: VolumePolicy, rel_vol: Optional[float]) -> List[str]:
    """Advisory notes for thin participation."""
    if policy.requires_retest or not policy.allow_one_bar_breakout:
        shown = f"{rel_vol:.2f}" if rel_vol is not None else "n/a"
        return [f"VOLUME ({policy.label}): relVol {shown}, size x{policy.size_mult:g}, "
                f"{policy.confirm_bars_required} confirm bars"
                + (", retest required" if policy.requires_retest else "")]
    return []
