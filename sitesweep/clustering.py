# sitesweep/clustering.py
"""
Single-pass greedy clustering of DOM fingerprints.

Fingerprints are processed in input order and each joins the first existing
cluster whose average similarity to it reaches the threshold. There is no
merge or re-balancing step afterwards, so the outcome depends on discovery
order; the sampler downstream relies on exactly this behaviour.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Sequence

from sitesweep.models import DOMFingerprint, PageCluster
from sitesweep.similarity import SimilarityCalculator
from sitesweep.url_logic import url_path

log = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.75

# (category, path fragments) checked in order against the lowercased path.
CATEGORY_RULES = (
    ("detail_page", ("/detail/", "/item/")),
    ("list_page", ("/list", "/search")),
    ("about_page", ("/about", "/company")),
    ("contact_page", ("/contact",)),
    ("help_page", ("/help", "/faq")),
    ("news_page", ("/news", "/blog")),
)


def infer_category(fp: DOMFingerprint) -> str:
    """
    Label a new cluster from its founding member's URL, then its shape.

    The whole lowercased URL is matched, host included, and any URL ending
    in a slash counts as a homepage (section roots such as /used-cars/ too).
    """
    url = fp.url.lower()
    if url.endswith("/") or url_path(fp.url) == "/":
        return "homepage"
    for category, fragments in CATEGORY_RULES:
        if any(fragment in url for fragment in fragments):
            return category

    if fp.node_count > 1000 and fp.depth > 10:
        return "complex_page"
    if fp.breadth > 20:
        return "content_heavy"
    return "other"


@dataclass
class ClusterEngine:
    """Partitions fingerprints into clusters of structurally similar pages."""

    threshold: float = DEFAULT_THRESHOLD
    calculator: SimilarityCalculator = field(default_factory=SimilarityCalculator)

    def find_representative(self, members: Sequence[DOMFingerprint]) -> DOMFingerprint:
        """The member with the highest average similarity to all the others."""
        if len(members) == 1:
            return members[0]

        best_member = members[0]
        best_score = -1.0
        for index, member in enumerate(members):
            others = [m for i, m in enumerate(members) if i != index]
            score = self.calculator.average(member, others)
            if score > best_score:
                best_score = score
                best_member = member
        return best_member

    def cluster(self, fingerprints: Sequence[DOMFingerprint]) -> List[PageCluster]:
        clusters: List[PageCluster] = []
        log.info(
            "Clustering %d pages with threshold %.2f", len(fingerprints), self.threshold
        )

        for fp in fingerprints:
            matched: PageCluster | None = None
            for candidate in clusters:
                if self.calculator.average(fp, candidate.members) >= self.threshold:
                    matched = candidate
                    break

            if matched is not None:
                matched.members.append(fp)
                matched.representative = self.find_representative(matched.members)
                log.debug("Added %s to %s", fp.url, matched.id)
            else:
                new_cluster = PageCluster(
                    id=f"cluster_{len(clusters) + 1}",
                    category=infer_category(fp),
                    members=[fp],
                    representative=fp,
                )
                clusters.append(new_cluster)
                log.debug(
                    "Created %s (%s) for %s", new_cluster.id, new_cluster.category, fp.url
                )

        log.info("Created %d clusters", len(clusters))
        return clusters
