from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from url_shortener_client import UrlShortenerConfig

_HTTP_METHODS = ("GET", "POST", "PUT")


class AppConfig(BaseSettings):
    """Centralized configuration model for all environment variables."""

    # Code block language detection for Matrix → Discord
    determine_code_language: bool = Field(default=False, env="DETERMINE_CODE_LANGUAGE")

    # URL shortener used for emoji images that have no Discord counterpart
    url_shortener_endpoint: str | None = Field(default=None, env="URL_SHORTENER_ENDPOINT")
    url_shortener_method: str = Field(default="POST", env="URL_SHORTENER_METHOD")
    url_shortener_url_parameter: str = Field(default="url", env="URL_SHORTENER_URL_PARAMETER")
    url_shortener_short_parameter: str = Field(default="short", env="URL_SHORTENER_SHORT_PARAMETER")
    url_shortener_extra_body: dict[str, Any] = Field(default_factory=dict, env="URL_SHORTENER_EXTRA_BODY")
    url_shortener_max_tries: int = Field(default=3, env="URL_SHORTENER_MAX_TRIES")
    url_shortener_timeout: float = Field(default=10.0, env="URL_SHORTENER_TIMEOUT")

    # OpenTelemetry configuration
    otel_service_name: str = Field(default="markup-bridge", env="OTEL_SERVICE_NAME")
    otel_exporter_otlp_endpoint: str = Field(
        default="localhost:4317", env="OTEL_EXPORTER_OTLP_ENDPOINT"
    )

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",  # Ignore extra environment variables
    }

    @field_validator("url_shortener_method")
    @classmethod
    def validate_url_shortener_method(cls, v: str) -> str:
        """Validate the shortener HTTP method is one we can send a body or query with."""
        method = v.upper()
        if method not in _HTTP_METHODS:
            raise ValueError(f"URL_SHORTENER_METHOD must be one of {', '.join(_HTTP_METHODS)}")
        return method

    @field_validator("url_shortener_max_tries")
    @classmethod
    def validate_url_shortener_max_tries(cls, v: int) -> int:
        """Validate max tries is positive."""
        if v <= 0:
            raise ValueError("URL_SHORTENER_MAX_TRIES must be positive")
        return v

    @field_validator("url_shortener_timeout")
    @classmethod
    def validate_url_shortener_timeout(cls, v: float) -> float:
        """Validate timeout is positive."""
        if v <= 0:
            raise ValueError("URL_SHORTENER_TIMEOUT must be positive")
        return v

    @field_validator("url_shortener_endpoint")
    @classmethod
    def validate_url_shortener_endpoint(cls, v: str | None) -> str | None:
        """Validate the shortener endpoint is an http(s) URL; empty disables shortening."""
        if not v:
            return None
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL_SHORTENER_ENDPOINT must be an http(s) URL")
        return v

    def url_shortener_config(self) -> UrlShortenerConfig | None:
        if not self.url_shortener_endpoint:
            return None
        return UrlShortenerConfig(
            endpoint=self.url_shortener_endpoint,
            method=self.url_shortener_method,
            url_parameter=self.url_shortener_url_parameter,
            short_parameter=self.url_shortener_short_parameter,
            extra_body=self.url_shortener_extra_body,
            max_tries=self.url_shortener_max_tries,
            timeout=self.url_shortener_timeout,
        )
