from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional, Sequence

from stream_service.models import Chunk, SpeakerSegment, SpeakerTurn, is_speech_label

logger = logging.getLogger(__name__)


def vote_speaker(start: float, end: float, segments: Sequence[SpeakerSegment]) -> Optional[str]:
    """Label with the most overlap with ``[start, end]``.

    Ties go to the label whose segment was encountered first.
    """
    votes: dict[str, float] = {}
    for seg in segments:
        if not is_speech_label(seg.label):
            continue
        overlap = min(end, seg.end) - max(start, seg.start)
        if overlap > 0:
            votes[seg.label] = votes.get(seg.label, 0.0) + overlap
    if not votes:
        return None
    return max(votes, key=votes.__getitem__)


def stitch(chunks: Sequence[Chunk], speaker_segments: Sequence[SpeakerSegment]) -> list[Chunk]:
    """Return copies of ``chunks`` with speakers assigned by overlap vote."""
    stitched: list[Chunk] = []
    unassigned = 0
    for chunk in chunks:
        copy = replace(chunk)
        if chunk.end is not None and speaker_segments:
            speaker = vote_speaker(chunk.start, chunk.end, speaker_segments)
            if speaker is not None:
                copy.speaker = speaker
            else:
                unassigned += 1
        stitched.append(copy)
    if unassigned:
        logger.debug("%d of %d chunks had no overlapping speaker", unassigned, len(chunks))
    return stitched


def group_by_speaker(chunks: Sequence[Chunk]) -> list[SpeakerTurn]:
    """Group consecutive chunks sharing a speaker into turns."""
    turns: list[SpeakerTurn] = []
    for chunk in chunks:
        if turns and turns[-1].speaker == chunk.speaker:
            turns[-1].chunks.append(chunk)
        else:
            turns.append(SpeakerTurn(speaker=chunk.speaker, chunks=[chunk]))
    return turns
