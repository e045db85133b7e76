from __future__ import annotations

import logging
from typing import Optional, Sequence

import numpy as np

from stream_service.models import SpeakerSegment

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLDS = (0.85, 0.75, 0.65)
SPEAKER_LABEL = "SPEAKER_{:02d}"


def cosine_similarity_matrix(embeddings: np.ndarray) -> np.ndarray:
    """Pairwise cosine similarity; pairs involving a zero-norm vector are -inf."""
    norms = np.linalg.norm(embeddings, axis=1)
    valid = np.isfinite(norms) & (norms > 0)
    safe = np.where(valid, norms, 1.0)
    unit = embeddings / safe[:, None]
    sim = unit @ unit.T
    mask = valid[:, None] & valid[None, :] & np.isfinite(sim)
    return np.where(mask, sim, -np.inf)


class SpeakerClusterer:
    """Greedy multi-threshold agglomeration of speaker embeddings.

    Each pass walks the still-unassigned embeddings in index order, opens a
    cluster for the first one and pulls in every later unassigned embedding
    whose similarity to it exceeds the pass threshold. Whatever remains after
    the last pass is either joined at ``fallback_threshold`` or left as a
    singleton cluster.
    """

    def __init__(
        self,
        thresholds: Sequence[float] = DEFAULT_THRESHOLDS,
        fallback_threshold: Optional[float] = None,
    ):
        self.thresholds = sorted(thresholds, reverse=True)
        self.fallback_threshold = fallback_threshold

    def cluster(self, embeddings: Sequence[Sequence[float]]) -> list[int]:
        if len(embeddings) == 0:
            return []

        matrix = np.asarray(embeddings, dtype=np.float64)
        if matrix.ndim != 2:
            raise ValueError(f"Expected a list of 1-D embeddings, got shape {matrix.shape}")

        sim = cosine_similarity_matrix(matrix)
        n = len(matrix)
        assignment = [-1] * n
        next_id = 0

        passes = list(self.thresholds)
        if self.fallback_threshold is not None:
            passes.append(self.fallback_threshold)

        for threshold in passes:
            for i in range(n):
                if assignment[i] != -1:
                    continue
                members = [
                    j for j in range(i + 1, n)
                    if assignment[j] == -1 and sim[i, j] > threshold
                ]
                if not members:
                    continue
                assignment[i] = next_id
                for j in members:
                    assignment[j] = next_id
                next_id += 1

        for i in range(n):
            if assignment[i] == -1:
                assignment[i] = next_id
                next_id += 1

        result = _renumber(assignment)
        logger.info("Clustered %d embeddings into %d speakers", n, max(result) + 1)
        return result


def _renumber(assignment: list[int]) -> list[int]:
    """Relabel cluster ids densely in order of first appearance."""
    mapping: dict[int, int] = {}
    for cid in assignment:
        if cid not in mapping:
            mapping[cid] = len(mapping)
    return [mapping[cid] for cid in assignment]


def label_segments(
    embeddings: Sequence[Sequence[float]],
    time_ranges: Sequence[tuple[float, float]],
    assignment: Sequence[int],
) -> list[SpeakerSegment]:
    """Build speaker segments from clustered embeddings and their source ranges.

    Confidence is the cosine similarity of each embedding to its cluster
    centroid, or None when either vector has zero norm.
    """
    if not (len(embeddings) == len(time_ranges) == len(assignment)):
        raise ValueError(
            f"Length mismatch: {len(embeddings)} embeddings, "
            f"{len(time_ranges)} time ranges, {len(assignment)} assignments"
        )
    if len(embeddings) == 0:
        return []

    matrix = np.asarray(embeddings, dtype=np.float64)
    ids = np.asarray(assignment)
    segments: list[SpeakerSegment] = []
    for idx, ((start, end), cid) in enumerate(zip(time_ranges, assignment)):
        if end <= start:
            logger.debug("Skipping empty embedding range [%.2f, %.2f]", start, end)
            continue
        centroid = matrix[ids == cid].mean(axis=0)
        segments.append(
            SpeakerSegment(
                label=SPEAKER_LABEL.format(cid),
                start=float(start),
                end=float(end),
                confidence=_similarity(matrix[idx], centroid),
            )
        )
    return segments


def _similarity(a: np.ndarray, b: np.ndarray) -> Optional[float]:
    denom = float(np.linalg.norm(a) * np.linalg.norm(b))
    if denom == 0 or not np.isfinite(denom):
        return None
    return round(float(np.dot(a, b) / denom), 4)
