"""
Wheel-sync contract.

The server draws the reward; the client only animates. Segments are built
from the same ordered active-reward list the draw used, and the client looks
the drawn reward up by id. A reward with no matching segment, or a segment
list with a different version, fails closed with ``WheelOutOfSync``; there is
no fallback segment.
"""
import hashlib
from typing import List, Optional, Sequence

from .errors import WheelOutOfSync
from .schemas import RewardConfig, WheelSegment


def build_segments(rewards: Sequence[RewardConfig]) -> List[WheelSegment]:
    return [
        WheelSegment(index=i, reward_id=r.id, label=r.label, color=r.color, icon=r.icon)
        for i, r in enumerate(rewards)
    ]


def segments_version(segments: Sequence[WheelSegment]) -> str:
    """Short fingerprint of the ordered (id, label) pairs."""
    h = hashlib.sha256()
    for s in segments:
        h.update(f"{s.reward_id}:{s.label}\n".encode("utf-8"))
    return h.hexdigest()[:12]


def locate_segment(
    segments: Sequence[WheelSegment],
    reward_id: int,
    expected_version: Optional[str] = None,
) -> int:
    """Index of the segment to stop on, or WheelOutOfSync."""
    if expected_version is not None and segments_version(segments) != expected_version:
        raise WheelOutOfSync(reward_id)
    for s in segments:
        if s.reward_id == reward_id:
            return s.index
    raise WheelOutOfSync(reward_id)
