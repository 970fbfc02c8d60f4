from .clustering import cluster_evidence, cluster_strength, chunk_clusters, make_cluster

__all__ = ["cluster_evidence", "cluster_strength", "chunk_clusters", "make_cluster"]
