from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_prefix": "SPARKGRID_", "case_sensitive": False}

    # App
    environment: str = "development"
    debug: bool = True
    app_name: str = "SparkGrid"
    json_logs: bool = False
    cors_origins: str = "*"

    # Load flow defaults
    default_tolerance: float = 1e-4
    default_max_iterations: int = 20

    # Contingency scan; 1 runs in the request thread
    contingency_workers: int = 1

    # Limits profile used when a request does not name one
    default_limits_profile: str = "uk_default"


settings = Settings()
