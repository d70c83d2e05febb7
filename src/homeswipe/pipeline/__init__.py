"""
Módulo del pipeline de enriquecimiento.

Orquesta la carga progresiva del feed, el top-up por patrón y el
re-ranking de la cola no vista después de cada swipe.
"""

from homeswipe.pipeline.enricher import ListingEnricher
from homeswipe.pipeline.enrichment import EnrichmentPipeline, PipelineState
from homeswipe.pipeline.feed import SwipeFeed, build_feed
from homeswipe.pipeline.topup import PatternTopUpController, merge_into_tail
from homeswipe.pipeline.worker_pool import BoundedWorkerPool, CancellationToken

__all__ = [
    "ListingEnricher",
    "EnrichmentPipeline",
    "PipelineState",
    "SwipeFeed",
    "build_feed",
    "PatternTopUpController",
    "merge_into_tail",
    "BoundedWorkerPool",
    "CancellationToken",
]
