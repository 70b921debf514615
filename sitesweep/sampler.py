# sitesweep/sampler.py
"""
Chooses which clustered pages actually get scanned.

Two stages:
  1. per cluster, a bounded farthest-point selection that favours structural
     diversity;
  2. a global backfill that tops up detail and list pages to a minimum count,
     since those are the page types most likely to break independently of
     their structural twins.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Pattern, Sequence, Tuple

from sitesweep.models import PageCluster, PageType, TypedFingerprint
from sitesweep.similarity import SimilarityCalculator
from sitesweep.url_logic import identify_page_type

log = logging.getLogger(__name__)

Sample = Dict[str, List[TypedFingerprint]]


@dataclass
class Sampler:
    max_per_category: int = 3
    detail_patterns: Tuple[Pattern[str], ...] = ()
    list_patterns: Tuple[Pattern[str], ...] = ()
    min_detail_pages: int = 3
    min_list_pages: int = 3
    calculator: SimilarityCalculator = field(default_factory=SimilarityCalculator)

    def page_type(self, url: str) -> PageType:
        return identify_page_type(url, self.detail_patterns, self.list_patterns)

    def select_diverse(
        self, members: Sequence[TypedFingerprint], max_samples: int
    ) -> List[TypedFingerprint]:
        """
        Greedy farthest-point selection seeded with the first member: keep
        adding the candidate whose similarity to its closest selected member
        is smallest.
        """
        if len(members) <= max_samples:
            return list(members)

        selected_idx = [0]
        while len(selected_idx) < max_samples:
            best_idx: int | None = None
            best_score = 0.0
            for idx, member in enumerate(members):
                if idx in selected_idx:
                    continue
                nearest = max(
                    self.calculator.calculate(member, members[s]) for s in selected_idx
                )
                if best_idx is None or nearest < best_score:
                    best_idx = idx
                    best_score = nearest
            if best_idx is None:
                break
            selected_idx.append(best_idx)

        return [members[i] for i in selected_idx]

    def _typed(self, clusters: Sequence[PageCluster]) -> List[Tuple[str, List[TypedFingerprint]]]:
        return [
            (
                c.id,
                [TypedFingerprint.from_fingerprint(fp, self.page_type(fp.url)) for fp in c.members],
            )
            for c in clusters
        ]

    def sample_from_clusters(self, clusters: Sequence[PageCluster]) -> Sample:
        """Per-cluster diverse picks, then detail/list backfill. Keyed by cluster id."""
        typed_clusters = self._typed(clusters)
        sampled: Sample = {}
        categories = {c.id: c.category for c in clusters}

        for cluster_id, members in typed_clusters:
            selected = self.select_diverse(members, self.max_per_category)
            sampled[cluster_id] = selected
            log.info(
                "Cluster %s: sampled %d/%d pages",
                categories[cluster_id],
                len(selected),
                len(members),
            )

        self._ensure_page_type(sampled, typed_clusters, "detail", self.min_detail_pages)
        self._ensure_page_type(sampled, typed_clusters, "list", self.min_list_pages)
        return sampled

    def _ensure_page_type(
        self,
        sampled: Sample,
        typed_clusters: Sequence[Tuple[str, List[TypedFingerprint]]],
        page_type: PageType,
        minimum: int,
    ) -> None:
        have = sum(1 for pages in sampled.values() for fp in pages if fp.page_type == page_type)
        if have >= minimum:
            return

        log.info("Need %d more %s page(s) (have %d)", minimum - have, page_type, have)
        taken = {fp.url for pages in sampled.values() for fp in pages}
        while have < minimum:
            found = None
            for cluster_id, members in typed_clusters:
                for fp in members:
                    if fp.page_type == page_type and fp.url not in taken:
                        found = (cluster_id, fp)
                        break
                if found:
                    break
            if found is None:
                log.warning("Could not find enough %s pages", page_type)
                break
            cluster_id, fp = found
            sampled.setdefault(cluster_id, []).append(fp)
            taken.add(fp.url)
            have += 1
            log.info("Added %s page: %s", page_type, fp.url)


def sampled_pages(sampled: Sample) -> List[TypedFingerprint]:
    """Flatten a sample in cluster order, dropping repeated URLs."""
    out: List[TypedFingerprint] = []
    seen: set[str] = set()
    for pages in sampled.values():
        for fp in pages:
            if fp.url in seen:
                continue
            seen.add(fp.url)
            out.append(fp)
    return out
