"""
HTTP Client for the contract registry and the geocoding service
================================================================

This module provides an async HTTP client with retry logic and rate limiting
for downloading the monthly dumps of the Czech contract registry
(data.smlouvy.gov.cz) and for querying a Nominatim-compatible geocoder.

Features:
- Async HTTP requests with aiohttp
- Exponential backoff retry logic
- Rate limiting (1 request/second by default, the geocoder's usage policy)
- Extended timeout for the large dump files
- HTTP 429 and 404 surfaced immediately instead of retried
"""

import aiohttp
import asyncio
from typing import Dict, List, Optional, Any
from dataclasses import dataclass
import logging
from asyncio_throttle import Throttler

from .exceptions import RateLimitError, SourceNotFoundError

logger = logging.getLogger(__name__)


@dataclass
class APIConfig:
    """Configuration for the HTTP client"""
    dump_base_url: str = "https://data.smlouvy.gov.cz"
    geocoder_url: str = "https://nominatim.openstreetmap.org/search"
    user_agent: str = "SmlouvySync/0.1 (+https://data.smlouvy.gov.cz)"
    contact_email: Optional[str] = None  # sent as From header to the geocoder
    accept_language: str = "cs,en"
    country_codes: str = "cz"
    rate_limit: int = 1  # requests per second
    timeout: int = 30  # seconds
    dump_timeout: int = 900  # dumps run to hundreds of megabytes
    max_retries: int = 3
    retry_delay: int = 2  # base delay in seconds
    backoff_factor: float = 2.0  # exponential backoff factor
    max_delay: int = 60


class SmlouvyAPIClient:
    """
    Async HTTP client for the registry dumps and the geocoding service.

    Use as an async context manager; the aiohttp session lives for the
    duration of the block.
    """

    def __init__(self, config: Optional[APIConfig] = None):
        """
        Initialize the client.

        Args:
            config: Optional configuration. Uses defaults if not provided.
        """
        self.config = config or APIConfig()
        self.throttler = Throttler(rate_limit=self.config.rate_limit)
        self.session: Optional[aiohttp.ClientSession] = None
        self.request_count = 0
        self.error_count = 0

    async def __aenter__(self):
        """Async context manager entry"""
        timeout = aiohttp.ClientTimeout(total=self.config.timeout)
        self.session = aiohttp.ClientSession(
            timeout=timeout,
            headers={"User-Agent": self.config.user_agent}
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit"""
        if self.session:
            await self.session.close()
            self.session = None

    async def _make_request(
        self,
        url: str,
        params: Dict[str, Any] = None,
        headers: Dict[str, str] = None,
        timeout: Optional[int] = None,
        max_retries: Optional[int] = None,
        as_json: bool = True
    ) -> Any:
        """
        Make a GET request with retry logic and rate limiting.

        Args:
            url: Absolute URL to fetch
            params: Query parameters for the request
            headers: Extra request headers
            timeout: Total timeout in seconds (defaults to config.timeout)
            max_retries: Attempts before giving up (defaults to config.max_retries)
            as_json: Decode the body as JSON, otherwise return raw bytes

        Returns:
            Decoded JSON or raw bytes

        Raises:
            RateLimitError: On HTTP 429 (not retried here)
            SourceNotFoundError: On HTTP 404 (not retried)
            aiohttp.ClientError / asyncio.TimeoutError: If all retry attempts fail
        """
        if self.session is None:
            raise RuntimeError("Client session is not open; use 'async with'")

        max_retries = max_retries or self.config.max_retries
        timeout = timeout or self.config.timeout
        base_delay = self.config.retry_delay
        backoff_factor = self.config.backoff_factor
        max_delay = self.config.max_delay

        for attempt in range(max_retries):
            try:
                # Apply rate limiting
                async with self.throttler:
                    request_timeout = aiohttp.ClientTimeout(total=timeout)

                    logger.debug(f"Attempt {attempt + 1}/{max_retries} for {url}")
                    logger.debug(f"Request params: {params}")

                    async with self.session.get(
                        url,
                        headers=headers,
                        params=params,
                        timeout=request_timeout
                    ) as response:
                        self.request_count += 1

                        if response.status == 429:
                            raise RateLimitError(f"Rate limited by {url}")
                        if response.status == 404:
                            raise SourceNotFoundError(f"Not found: {url}")

                        response.raise_for_status()

                        if as_json:
                            # Nominatim occasionally serves JSON with a text/html type
                            data = await response.json(content_type=None)
                        else:
                            data = await response.read()

                        logger.debug(f"Successfully fetched {url} (attempt {attempt + 1})")
                        return data

            except (RateLimitError, SourceNotFoundError):
                self.error_count += 1
                raise

            except asyncio.TimeoutError:
                self.error_count += 1
                delay = min(base_delay * (backoff_factor ** attempt), max_delay)

                logger.warning(f"Timeout on attempt {attempt + 1}/{max_retries} "
                               f"for {url}. Waiting {delay}s before retry...")

                if attempt < max_retries - 1:
                    await asyncio.sleep(delay)
                else:
                    logger.error(f"All retry attempts failed for {url}")
                    raise

            except aiohttp.ClientError as e:
                self.error_count += 1
                delay = min(base_delay * (backoff_factor ** attempt), max_delay)

                logger.error(f"Client error on attempt {attempt + 1}: {str(e)}")

                if attempt < max_retries - 1:
                    await asyncio.sleep(delay)
                else:
                    raise

    def dump_url(self, filename: str) -> str:
        return f"{self.config.dump_base_url.rstrip('/')}/{filename}"

    async def download_dump(self, filename: str) -> bytes:
        """
        Download one monthly dump file.

        Args:
            filename: Dump file name, e.g. dump_2024_03.xml

        Returns:
            Raw XML bytes
        """
        url = self.dump_url(filename)
        logger.info(f"Downloading dump {url}")

        content = await self._make_request(
            url,
            timeout=self.config.dump_timeout,
            as_json=False
        )

        logger.info(f"Downloaded {len(content)} bytes from {url}")
        return content

    async def search_places(self, query: str, limit: int = 1) -> List[Dict[str, Any]]:
        """
        Free-text place search against the geocoder.

        A single attempt is made; the caller decides how to fall back.

        Args:
            query: Free-text query
            limit: Maximum number of results

        Returns:
            List of result dictionaries (lat/lon as strings), possibly empty

        Raises:
            RateLimitError: When the geocoder answers HTTP 429
        """
        params = {
            "q": query,
            "format": "json",
            "limit": limit,
            "countrycodes": self.config.country_codes
        }
        headers = {"Accept-Language": self.config.accept_language}
        if self.config.contact_email:
            headers["From"] = self.config.contact_email

        result = await self._make_request(
            self.config.geocoder_url,
            params=params,
            headers=headers,
            max_retries=1
        )

        if isinstance(result, list):
            return result
        logger.warning(f"Unexpected geocoder response format: {type(result)}")
        return []

    def get_statistics(self) -> Dict[str, int]:
        """
        Get client statistics.

        Returns:
            Dictionary with request and error counts
        """
        return {
            "total_requests": self.request_count,
            "total_errors": self.error_count,
            "success_rate": (
                (self.request_count - self.error_count) / self.request_count * 100
                if self.request_count > 0 else 0
            )
        }
