"""Diarization cleanup.

Raw diarization output is fragmented: short spurious detections, speakers
with a second of total speech, and one speaker's turn split by every breath.
``clean`` filters that noise and merges each speaker's fragments using a
silence threshold derived from the recording's own pause rhythm.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional, Sequence

import numpy as np

from stream_service.models import SpeakerSegment, is_speech_label

logger = logging.getLogger(__name__)

DEFAULT_GAP = 1.5
MIN_GAP = 0.5
MAX_GAP = 3.0
GAP_PADDING = 0.5


def dynamic_gap(segments: Sequence[SpeakerSegment]) -> float:
    """Median positive pause between consecutive segments plus padding, clamped.

    With an even number of pauses the upper of the two middle values is used.
    """
    gaps = [
        nxt.start - prev.end
        for prev, nxt in zip(segments, segments[1:])
        if nxt.start - prev.end > 0
    ]
    if len(gaps) < 2:
        return DEFAULT_GAP
    gap = float(np.sort(gaps)[len(gaps) // 2]) + GAP_PADDING
    return max(MIN_GAP, min(gap, MAX_GAP))


def main_speakers(segments: Sequence[SpeakerSegment], min_speaking_time: float) -> set[str]:
    totals: dict[str, float] = {}
    for seg in segments:
        totals[seg.label] = totals.get(seg.label, 0.0) + seg.duration
    return {label for label, total in totals.items() if total >= min_speaking_time}


def consolidate_turns(segments: Sequence[SpeakerSegment], max_gap: float) -> list[SpeakerSegment]:
    """Merge one speaker's consecutive segments separated by at most ``max_gap``."""
    if not segments:
        return []
    consolidated: list[SpeakerSegment] = []
    current = replace(segments[0])
    for seg in segments[1:]:
        if seg.start - current.end <= max_gap:
            current.end = max(current.end, seg.end)
        else:
            consolidated.append(current)
            current = replace(seg)
    consolidated.append(current)
    return consolidated


def clean(
    segments: Sequence[SpeakerSegment],
    min_speaking_time: float = 1.0,
    min_segment_duration: float = 0.2,
    max_gap: Optional[float] = None,
) -> list[SpeakerSegment]:
    """Return a new, filtered and consolidated list of speaker segments."""
    speech = [s for s in segments if is_speech_label(s.label)]
    if not speech:
        return []

    gap = max_gap if max_gap is not None else dynamic_gap(speech)

    speakers = main_speakers(speech, min_speaking_time)
    if not speakers:
        logger.info("No speaker reached %.2fs of speech", min_speaking_time)
        return []

    by_speaker: dict[str, list[SpeakerSegment]] = {}
    for seg in speech:
        if seg.label in speakers and seg.duration >= min_segment_duration:
            by_speaker.setdefault(seg.label, []).append(seg)

    result: list[SpeakerSegment] = []
    for turns in by_speaker.values():
        result.extend(consolidate_turns(turns, gap))
    result.sort(key=lambda s: s.start)

    logger.info(
        "Cleaned %d segments into %d turns (%d speakers, max_gap=%.2fs)",
        len(segments), len(result), len(by_speaker), gap,
    )
    return result
