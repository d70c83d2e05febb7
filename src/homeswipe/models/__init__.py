"""
Modelos de datos del sistema.

Arquitectura Medallion:
- Bronze: RawListing (datos crudos del proveedor)
- Gold: Listing (datos enriquecidos y rankeados)
"""

from homeswipe.models.raw_listing import RawListing
from homeswipe.models.listing import CommuteTime, Listing, ListingTags
from homeswipe.models.swipe import (
    QuizAnswers,
    SavedPlace,
    SwipeDirection,
    SwipeEntry,
    SwipeHistory,
)
from homeswipe.models.signals import PreferenceSignals, RangeStats
from homeswipe.models.session import EnrichmentStatus, ListingFilters, SessionSnapshot

__all__ = [
    # Bronze
    "RawListing",
    # Gold
    "Listing",
    "ListingTags",
    "CommuteTime",
    # Feedback
    "SwipeDirection",
    "SwipeEntry",
    "SwipeHistory",
    "QuizAnswers",
    "SavedPlace",
    # Señales
    "PreferenceSignals",
    "RangeStats",
    # Sesión
    "ListingFilters",
    "EnrichmentStatus",
    "SessionSnapshot",
]
