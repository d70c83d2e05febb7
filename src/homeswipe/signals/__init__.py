"""
Módulo de señales de preferencia.

Historial de swipes y derivación de afinidades/rangos aprendidos.
"""

from homeswipe.signals.history import normalize_swipe_history
from homeswipe.signals.store import SignalStore, WARM_START_SWIPES, summarize_signals

__all__ = [
    "SignalStore",
    "WARM_START_SWIPES",
    "normalize_swipe_history",
    "summarize_signals",
]
