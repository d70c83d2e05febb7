"""
Excepciones del sistema.

Solo la falla de la consulta cruda de listings llega al usuario;
el resto se degrada dentro del pipeline.
"""


class HomeSwipeError(Exception):
    """Base de todos los errores propios."""


class ListingSourceError(HomeSwipeError):
    """La fuente de listings falló (HTTP, red o respuesta inválida)."""


class LLMUnavailableError(HomeSwipeError):
    """No hay API key configurada para el proveedor de LLM."""


class LLMTransientError(HomeSwipeError):
    """Rate limit o error transitorio del LLM: se puede reintentar."""


class OperationCancelled(HomeSwipeError):
    """La corrida fue cancelada (cambio de filtros o fin de sesión)."""
