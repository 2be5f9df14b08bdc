import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Literal

import aiohttp
import backoff
from opentelemetry.trace import SpanKind
from pydantic import BaseModel, field_validator

from open_telemetry import Telemetry

logger = logging.getLogger(__name__)


# === Models ===


class UrlShortenerConfig(BaseModel):
    """Where and how to call a URL shortening service."""

    endpoint: str
    method: Literal["GET", "POST", "PUT"] = "POST"
    url_parameter: str = "url"
    short_parameter: str = "short"
    extra_body: dict[str, Any] = {}
    max_tries: int = 3
    timeout: float = 10.0


class ShortenedUrl(BaseModel):
    """Short URL extracted from the service response."""

    short_url: str

    @field_validator("short_url")
    @classmethod
    def validate_short_url(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("short URL must not be empty")
        return v


# === Exceptions ===


class UrlShortenerError(Exception):
    """Error shortening a URL."""

    pass


class UrlShortenerConnectionError(UrlShortenerError):
    """Connection failed. Retry may succeed."""

    pass


class UrlShortener(ABC):
    @abstractmethod
    async def shorten(self, url: str) -> str:
        pass


class UrlShortenerClient(UrlShortener):
    """Client for a configurable JSON URL shortening API."""

    def __init__(self, config: UrlShortenerConfig, telemetry: Telemetry):
        """
        Initialize the shortener client.

        Args:
            config: Endpoint, HTTP method and field names of the service
            telemetry: Telemetry instance for tracing
        """
        self.config = config
        self.telemetry = telemetry

    async def shorten(self, url: str) -> str:
        """
        Shorten a URL.

        Args:
            url: The long URL to shorten

        Returns:
            Shortened URL string

        Raises:
            UrlShortenerConnectionError: Connection failed after retries
            UrlShortenerError: If shortening fails
        """
        async with self.telemetry.async_create_span("url_shortener.shorten", kind=SpanKind.CLIENT) as span:
            span.set_attribute("endpoint", self.config.endpoint)

            @backoff.on_exception(
                backoff.expo,
                UrlShortenerConnectionError,
                max_tries=self.config.max_tries,
                jitter=backoff.full_jitter,
            )
            async def _do_request() -> str:
                return await self._shorten_impl(url)

            try:
                result = await _do_request()
            except UrlShortenerError:
                self.telemetry.metrics.url_shortenings.add(1, {"outcome": "error"})
                raise
            self.telemetry.metrics.url_shortenings.add(1, {"outcome": "success"})
            span.set_attribute("short_url", result)
            return result

    def _request_kwargs(self, url: str) -> dict:
        payload = {**self.config.extra_body, self.config.url_parameter: url}
        if self.config.method == "GET":
            return {"params": payload}
        return {"json": payload}

    async def _shorten_impl(self, url: str) -> str:
        """Internal implementation of URL shortening."""
        try:
            async with aiohttp.ClientSession() as session:
                async with session.request(
                    self.config.method,
                    self.config.endpoint,
                    timeout=aiohttp.ClientTimeout(total=self.config.timeout),
                    **self._request_kwargs(url),
                ) as response:
                    if response.status >= 500:
                        raise UrlShortenerConnectionError(f"Server error: HTTP {response.status}")
                    if response.status >= 400:
                        raise UrlShortenerError(f"URL shortener rejected request: HTTP {response.status}")
                    data = await response.json(content_type=None)
                    return self._parse_response(data)

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning("URL shortener connection error (will retry)", exc_info=True)
            raise UrlShortenerConnectionError(f"Connection error: {e}") from e
        except UrlShortenerError:
            raise
        except Exception as e:
            logger.error("Unexpected URL shortener error", exc_info=True)
            raise UrlShortenerError(f"Unexpected error: {e}") from e

    def _parse_response(self, data: Any) -> str:
        """Pick the configured response field out of the JSON body."""
        if not isinstance(data, dict) or not isinstance(data.get(self.config.short_parameter), str):
            raise UrlShortenerError(f"Response has no '{self.config.short_parameter}' field")
        return ShortenedUrl.model_validate({"short_url": data[self.config.short_parameter]}).short_url
