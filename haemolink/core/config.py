from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "haemolink-tracking-api"
    env: str = "dev"

    # Supabase (backend collaborator)
    supabase_url: str = "http://localhost:54321"
    supabase_anon_key: str = ""
    supabase_jwt_secret: str = "dev-secret-change-me"
    supabase_jwt_audience: str = "authenticated"
    rpc_timeout_seconds: float = 10.0

    # Local persistence (UPI preferences only)
    database_url: str = "sqlite:///./haemolink.db"

    # CORS (dev)
    cors_allow_origins: str = (
        "http://localhost:5173,http://127.0.0.1:5173,"
        "http://localhost:3000"
    )

    # Routing service
    osrm_base_url: str = "https://router.project-osrm.org"
    route_timeout_seconds: float = 10.0

    # UPI / QR
    qr_image_base_url: str = "https://api.qrserver.com/v1/create-qr-code/"
    qr_image_size: int = 220
    upi_currency: str = "INR"
    upi_default_payee: str = "HAEMOLINK"

    # Polling
    tracking_cooldown_seconds: float = 15.0
    refresh_interval_seconds: int = 8

    # Geolocation
    geo_fix_timeout_ms: int = 20000
    geo_desired_accuracy_m: float = 10.0
    geo_single_shot_cap_ms: int = 15000
    geo_fix_max_age_seconds: float = 30.0

    # Rider position reporting
    rider_position_min_interval_seconds: float = 5.0
    rider_position_max_accuracy_m: float = 15.0

    # Request broadcast
    broadcast_radius_km: float = 15.0

    # Map
    map_default_lat: float = 20.5937
    map_default_lng: float = 78.9629
    map_zoom: int = 12
    map_tile_url: str = "https://{s}.tile.openstreetmap.org/{z}/{x}/{y}.png"

    class Config:
        env_file = ".env"
        case_sensitive = False

    @field_validator("database_url", mode="before")
    @classmethod
    def _normalize_database_url(cls, v: str) -> str:
        # Some providers emit `postgres://...` which SQLAlchemy rejects.
        if isinstance(v, str) and v.startswith("postgres://"):
            return "postgresql+psycopg://" + v[len("postgres://") :]
        if isinstance(v, str) and v.startswith("postgresql://"):
            return "postgresql+psycopg://" + v[len("postgresql://") :]
        return v

    @field_validator("supabase_url", mode="before")
    @classmethod
    def _strip_supabase_url(cls, v: str) -> str:
        if isinstance(v, str):
            return v.strip().rstrip("/")
        return v


settings = Settings()
