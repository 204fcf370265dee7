"""Entity deduplication and golden-record selection.

Main Components
---------------
- DeduplicationEngine: index lookup of duplicates and whole-dataset clustering
- EntityCluster: members of one subject with exactly one golden record
- UnionFind: connected components over linking pairs
"""

from recolink.dedup.engine import DeduplicationEngine
from recolink.dedup.models import DeduplicationConfig, EntityCluster, compute_cluster_id
from recolink.dedup.survivor import build_cluster, merge_into, ranking_key, select_golden
from recolink.dedup.union_find import UnionFind

__all__ = [
    "DeduplicationEngine",
    "DeduplicationConfig",
    "EntityCluster",
    "UnionFind",
    "build_cluster",
    "compute_cluster_id",
    "merge_into",
    "ranking_key",
    "select_golden",
]
