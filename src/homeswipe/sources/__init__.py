"""
Módulo de fuentes externas.

Listings (RentCast), geocoding y tiempos de viaje (Mapbox / HERE) y
features por dirección (SerpApi).
"""

from homeswipe.sources.base import BaseListingSource, HTTPClient, interleave_unique
from homeswipe.sources.commute import CommuteService, build_tradeoff
from homeswipe.sources.features import FeatureLookup, flatten_text_blocks
from homeswipe.sources.rentcast import RentCastSource, build_streeteasy_url

__all__ = [
    "BaseListingSource",
    "HTTPClient",
    "interleave_unique",
    "CommuteService",
    "build_tradeoff",
    "FeatureLookup",
    "flatten_text_blocks",
    "RentCastSource",
    "build_streeteasy_url",
]
