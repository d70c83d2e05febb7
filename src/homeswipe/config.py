"""
Configuración centralizada del sistema.
Carga variables de entorno y define settings globales.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Encontrar la raíz del proyecto (donde está el .env)
# config.py -> homeswipe/ -> src/ -> project root
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    """Configuración principal de la aplicación."""

    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # LLM Provider
    llm_provider: str = Field(
        "groq",
        description="Proveedor de LLM a usar: 'gemini' o 'groq'"
    )

    # Gemini
    gemini_api_key: Optional[str] = Field(None, description="API key de Google Gemini")
    gemini_model: str = Field("gemini-2.0-flash", description="Modelo de Gemini a usar")

    # Groq
    groq_api_key: Optional[str] = Field(None, description="API key de Groq")
    groq_model: str = Field(
        "llama-3.1-8b-instant",
        description="Modelo de Groq a usar (llama-3.1-8b-instant, llama-3.3-70b-versatile)"
    )

    # Reintentos del LLM (solo ante rate limit / errores transitorios)
    llm_max_attempts: int = Field(3, ge=1, description="Intentos máximos por llamada al LLM")
    llm_backoff_max: float = Field(8.0, description="Tope del backoff exponencial (segundos)")

    # Proveedores externos
    rentcast_api_key: Optional[str] = Field(None, description="API key de RentCast (listings)")
    mapbox_token: Optional[str] = Field(None, description="Token de Mapbox (geocoding + rutas)")
    here_api_key: Optional[str] = Field(None, description="API key de HERE (transporte público)")
    serpapi_key: Optional[str] = Field(None, description="API key de SerpApi (features por dirección)")
    http_timeout: float = Field(20.0, description="Timeout de requests HTTP (segundos)")

    # Persistencia
    storage_backend: str = Field(
        "memory", description="Backend key-value: 'memory', 'file' o 'supabase'"
    )
    storage_path: str = Field(
        str(_PROJECT_ROOT / ".homeswipe" / "store.json"),
        description="Archivo JSON para el backend 'file'",
    )
    supabase_url: Optional[str] = Field(None, description="URL del proyecto Supabase")
    supabase_key: Optional[str] = Field(None, description="Anon key de Supabase")
    supabase_service_key: Optional[str] = Field(
        None, description="Service role key para operaciones admin"
    )

    # Búsqueda
    city: str = Field("New York", description="Ciudad de la búsqueda")
    state: str = Field("NY", description="Estado de la búsqueda")
    subregions: list[str] = Field(
        default_factory=list,
        description="Sub-áreas a consultar por separado (vacío = una sola consulta)",
    )
    listing_limit: int = Field(20, ge=1, description="Listings por consulta")

    # Pipeline de enriquecimiento
    initial_batch_size: int = Field(5, ge=0, description="Listings enriquecidos antes de mostrar")
    enrichment_concurrency: int = Field(
        1, ge=1, description="Workers de enriquecimiento (1 = secuencial por rate limits)"
    )

    # Pattern top-up
    pattern_trigger_swipes: int = Field(4, ge=1, description="Swipes para disparar un top-up")
    pattern_target_count: int = Field(5, ge=1, description="Listings nuevos por top-up")
    pattern_pool_multiplier: int = Field(6, ge=6, description="Tamaño del pool vs target")
    pattern_seed_multiplier: int = Field(4, ge=4, description="Semillas a enriquecer vs target")
    pattern_max_exhaustion_retries: int = Field(
        3, ge=0, description="Top-ups permitidos al agotarse la cola"
    )

    # Logging
    log_level: str = Field("INFO", description="Nivel de logging")


@lru_cache
def get_settings() -> Settings:
    """Obtiene la configuración cacheada."""
    return Settings()


# Constantes del sistema
PRICE_TYPES = ["rent", "buy"]

COMMUTE_MODES = ["transit", "drive", "bike", "walk"]

NYC_BOROUGHS = [
    "Manhattan",
    "Brooklyn",
    "Queens",
    "Bronx",
    "Staten Island",
]

# Amenities booleanas que extrae el LLM (orden estable para explicaciones)
BOOLEAN_TAG_KEYS = [
    "natural_light",
    "elevator",
    "laundry_in_building",
    "laundry_in_unit",
    "doorman",
    "pet_friendly",
    "dishwasher",
    "renovated",
]
