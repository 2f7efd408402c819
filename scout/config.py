from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    api_url: str = "http://localhost:8080"
    api_timeout_seconds: float = 30.0
    log_level: str = "INFO"
    timezone: str = "Europe/Vilnius"

    # Browser
    browser_user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    page_timeout_ms: int = 45000
    scroll_step_px: int = 800
    scroll_max_steps: int = 20
    scroll_max_ms: int = 15000
    scroll_pause_ms: int = 250
    settle_delay_seconds: float = 2.0
    hydration_delay_seconds: float = 1.5
    max_candidates_per_target: int = 15
    pacing_min_seconds: float = 1.0
    pacing_max_seconds: float = 3.0

    # Geocoding (Nominatim usage policy: max 1 request/second)
    geocode_cache_path: str = "geocode_cache.json"
    geocode_user_agent: str = "EventScout/1.0 (contact@eventscout.lt)"
    geocode_delay_seconds: float = 1.1
    nominatim_url: str = "https://nominatim.openstreetmap.org/search"
    maps_search_url: str = "https://www.google.com/maps/search/"
    country: str = "Lithuania"

    # Fallback placement when geocoding fails (Kaunas)
    default_lat: float = 54.8985
    default_lng: float = 23.9036
    scatter_radius: float = 0.025

    # Eventbrite (runs only when a key is set)
    eventbrite_api_key: Optional[str] = None
    eventbrite_api_url: str = "https://www.eventbriteapi.com/v3"
    eventbrite_search_radius: str = "50km"
    eventbrite_event_type: str = "social"
    eventbrite_scatter_radius: float = 0.01

    # Mission
    batch_size: int = 5
    event_duration_hours: int = 3
    default_event_type: str = "music"

    model_config = {"env_file": ".env"}


settings = Settings()
