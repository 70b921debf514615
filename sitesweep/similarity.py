# Implements structural similarity between two DOM fingerprints.

from __future__ import annotations

from typing import Sequence

from sitesweep.models import DOMFingerprint

TAG_WEIGHT = 0.6
STRUCTURE_WEIGHT = 0.4

DEPTH_WEIGHT = 0.3
BREADTH_WEIGHT = 0.2
NODE_COUNT_WEIGHT = 0.2
CLASS_WEIGHT = 0.3


def levenshtein(a: Sequence[str], b: Sequence[str]) -> int:
    """Unit-cost edit distance between two token sequences."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, token_a in enumerate(a, start=1):
        current = [i]
        for j, token_b in enumerate(b, start=1):
            if token_a == token_b:
                current.append(previous[j - 1])
            else:
                current.append(
                    1 + min(previous[j], current[j - 1], previous[j - 1])
                )
        previous = current
    return previous[-1]


def tag_sequence_similarity(fp1: DOMFingerprint, fp2: DOMFingerprint) -> float:
    len1, len2 = len(fp1.tag_sequence), len(fp2.tag_sequence)
    if len1 == 0 and len2 == 0:
        return 1.0
    if len1 == 0 or len2 == 0:
        return 0.0
    distance = levenshtein(fp1.tag_sequence, fp2.tag_sequence)
    return 1.0 - distance / max(len1, len2)


def closeness(x: int, y: int) -> float:
    """1 - |x - y| / max(x, y); two zeros are identical."""
    if x == 0 and y == 0:
        return 1.0
    return 1.0 - abs(x - y) / max(x, y)


def class_overlap(fp1: DOMFingerprint, fp2: DOMFingerprint) -> float:
    """Jaccard index of the two class vocabularies; empty union counts as 1."""
    s1, s2 = set(fp1.class_patterns), set(fp2.class_patterns)
    union = s1 | s2
    if not union:
        return 1.0
    return len(s1 & s2) / len(union)


def structural_similarity(fp1: DOMFingerprint, fp2: DOMFingerprint) -> float:
    return (
        closeness(fp1.depth, fp2.depth) * DEPTH_WEIGHT
        + closeness(fp1.breadth, fp2.breadth) * BREADTH_WEIGHT
        + closeness(fp1.node_count, fp2.node_count) * NODE_COUNT_WEIGHT
        + class_overlap(fp1, fp2) * CLASS_WEIGHT
    )


def calculate_similarity(fp1: DOMFingerprint, fp2: DOMFingerprint) -> float:
    """
    Overall similarity in [0, 1]: 60% tag sequence, 40% structure.
    Symmetric, and 1.0 for a fingerprint compared with itself.
    """
    score = (
        tag_sequence_similarity(fp1, fp2) * TAG_WEIGHT
        + structural_similarity(fp1, fp2) * STRUCTURE_WEIGHT
    )
    return max(0.0, min(1.0, score))


def average_similarity(
    fp: DOMFingerprint, members: Sequence[DOMFingerprint]
) -> float:
    """Mean similarity of `fp` to each member; 0 for an empty member list."""
    if not members:
        return 0.0
    return sum(calculate_similarity(fp, m) for m in members) / len(members)


class SimilarityCalculator:
    """Injectable wrapper around the module-level functions."""

    def calculate(self, fp1: DOMFingerprint, fp2: DOMFingerprint) -> float:
        return calculate_similarity(fp1, fp2)

    def average(self, fp: DOMFingerprint, members: Sequence[DOMFingerprint]) -> float:
        return average_similarity(fp, members)
