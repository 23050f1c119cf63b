from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from zenith.core.errors import ValidationError
from zenith.runner.toolchain import TemplateKind


def _normalise_host(host: str) -> str:
    """Lower-case a source host and drop any scheme or trailing slash.

    Operators tend to paste ``https://github.com/`` into SOURCE_HOSTS; the
    URL validator compares bare hostnames, so both forms are accepted.
    """
    host = host.strip().lower()
    for prefix in ("https://", "http://"):
        if host.startswith(prefix):
            host = host[len(prefix):]
    return host.rstrip("/")


class Settings(BaseSettings):
    """Process configuration loaded from environment variables and `.env`.

    Storage credentials follow the B2_* names used by the existing
    deployments so a single `.env` can be shared with them.

    Storage backends
    ────────────────
    - s3    : any S3-compatible endpoint (Backblaze B2, MinIO, AWS)
    - local : a directory tree under LOCAL_STORAGE_DIR (development, CI)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Artifact storage
    storage_backend: Literal["s3", "local"] = "s3"
    b2_endpoint: str = ""
    b2_access_key: str = ""
    b2_secret_key: str = ""
    b2_region: str = ""
    b2_bucket: str = "zenith123"
    local_storage_dir: str = "storage"

    # Transfer deadlines (seconds). Build archives can be large, so uploads
    # get the longer budget.
    upload_timeout: float = 600.0
    download_timeout: float = 300.0

    # Source control
    github_token: str = ""
    source_hosts: list[str] = ["github.com"]

    @field_validator("source_hosts", mode="after")
    @classmethod
    def normalise_source_hosts(cls, v: list[str]) -> list[str]:
        return [_normalise_host(h) for h in v if h.strip()]

    # Scratch space for clones, extractions and archives
    work_dir: str = "tmp"
    # Long-lived extracted build trees served by the static server
    deploy_dir: str = "deployed"

    # Build stage
    default_template: str = "create-react-app"

    @field_validator("default_template", mode="after")
    @classmethod
    def check_default_template(cls, v: str) -> str:
        try:
            return TemplateKind.parse(v).value
        except ValidationError as exc:
            raise ValueError(exc.message) from exc

    auto_create_from_template: bool = False
    # "repository" serialises builds per name; "global" serialises every build.
    build_lock_scope: Literal["repository", "global"] = "repository"
    clone_timeout: int = 300
    install_timeout: int = 900
    build_timeout: int = 900
    scaffold_timeout: int = 900

    # Delivery stage
    static_host: str = "127.0.0.1"
    static_port: int = 8181
    ngrok_bin: str = "ngrok"
    ngrok_authtoken: str = ""
    tunnel_api_url: str = "http://localhost:4040/api/tunnels"
    tunnel_timeout: float = 30.0
    tunnel_poll_interval: float = 0.5

    # Remote stages: leave blank to run the stage in-process.
    ingest_service_url: str = ""
    build_service_url: str = ""
    stage_request_timeout: float = 1800.0

    # CORS: the dashboard runs on :3000 during development.
    cors_origins: list[str] = ["http://localhost:3000"]

    # Rate limiting: SlowAPI format, e.g. "5/minute".
    deploy_rate_limit: str = "5/minute"

    # Sentry: leave blank to disable error capture.
    sentry_dsn: str = ""

    # App
    port: int = 8080
    debug: bool = True


def get_settings() -> Settings:
    return Settings()
