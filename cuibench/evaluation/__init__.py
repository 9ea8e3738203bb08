"""
Embedding benchmark evaluation

Scores concept embeddings against reference relationships:
  - Ranking metrics: AP@k, MAP@k, DCG
  - Relationship adapters: comorbidity, causative, semantic type, NDF-RT
  - Orchestration over a target and reference embeddings with CUI-universe alignment
"""
from .metrics import apk, mapk, dcg, cosine_similarity
from .relationships import (
    ReferenceData, benchmark_comorbidities, benchmark_causative,
    benchmark_semantic_type, benchmark_ndf_rt,
)
from .benchmark import ScoreRecord, align_universes, benchmark_map, benchmark_dcg, summarize_scores

__all__ = [
    "apk", "mapk", "dcg", "cosine_similarity",
    "ReferenceData", "benchmark_comorbidities", "benchmark_causative",
    "benchmark_semantic_type", "benchmark_ndf_rt",
    "ScoreRecord", "align_universes", "benchmark_map", "benchmark_dcg", "summarize_scores",
]
