from collections import defaultdict
from typing import Dict, Iterable, List

from nycping.core.entities import StoryCluster
from nycping.core.schemas import EnhancedDigestContent


def build_clusters(
    content: EnhancedDigestContent,
    allowed_ids: Iterable[str],
) -> List[StoryCluster]:
    """
    Map LLM clusters onto the items a user is actually receiving.
    An item belongs to the first cluster that names it; empty clusters are dropped.
    """
    allowed = set(allowed_ids)
    assignments: Dict[str, int] = {}
    for cluster_id, cluster in enumerate(content.clusters):
        for item_id in cluster.item_ids:
            if item_id in allowed and item_id not in assignments:
                assignments[item_id] = cluster_id

    grouped: dict[int, list[str]] = defaultdict(list)
    for item_id, cluster_id in assignments.items():
        grouped[cluster_id].append(item_id)

    return [
        StoryCluster(
            id=cluster_id,
            title=content.clusters[cluster_id].title.strip(),
            summary=content.clusters[cluster_id].summary.strip(),
            item_ids=item_ids,
        )
        for cluster_id, item_ids in sorted(grouped.items())
    ]
