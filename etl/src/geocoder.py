"""
Geocoder Module
Resolves an authority's address (or, failing that, its name) to coordinates
using a Nominatim-compatible search service.

Each call walks a short, fixed list of query variants. One variant is a
small state machine: attempt -> success | rate limited | no result | error.
A rate-limited attempt backs off and retries once with the most simplified
query; anything else moves on to the next variant. When all variants fail,
a jittered point around the country's centroid is returned so the contract
still lands on the map.
"""

import asyncio
import logging
import random
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, NamedTuple, Optional, Tuple

from .exceptions import RateLimitError
from .models import NOT_SPECIFIED, Coordinates

logger = logging.getLogger(__name__)

POSTAL_CODE_PATTERN = re.compile(r'\b\d{3}\s?\d{2}\b')

# Ordered: municipal prefix, region suffix, then any capitalised word run
CITY_PATTERNS = (
    re.compile(
        r'(?:Město|Obec|Magistrát města|Městský úřad|MÚ)\s+'
        r'([A-ZÁ-Ž][a-zá-ž]+(?:[\s-][A-ZÁ-Ž][a-zá-ž]+)*)',
        re.IGNORECASE,
    ),
    re.compile(r'([A-ZÁ-Ž][a-zá-ž]+(?:[\s-][A-ZÁ-Ž][a-zá-ž]+)*)\s+kraj'),
    re.compile(r'([A-ZÁ-Ž][a-zá-ž]+(?:[\s-][A-ZÁ-Ž][a-zá-ž]+)*)'),
)


@dataclass
class GeocoderConfig:
    """Configuration for the geocoder"""
    request_delay: float = 1.1  # seconds before every request, service policy is >= 1 s
    rate_limit_backoff: float = 5.0
    country_name: str = "Česká republika"
    centroid: Tuple[float, float] = (49.8, 15.5)
    jitter: Tuple[float, float] = (0.4, 1.0)  # +/- degrees of lat, lng
    max_address_length: int = 100
    max_variants: int = 3

    @property
    def bounding_box(self) -> Tuple[float, float, float, float]:
        """(min_lat, max_lat, min_lng, max_lng) of the fallback area."""
        lat, lng = self.centroid
        lat_jitter, lng_jitter = self.jitter
        return (lat - lat_jitter, lat + lat_jitter, lng - lng_jitter, lng + lng_jitter)


class AttemptOutcome(Enum):
    SUCCESS = "success"
    RATE_LIMITED = "rate_limited"
    NO_RESULT = "no_result"
    ERROR = "error"


class QueryVariant(NamedTuple):
    query: str
    source: str  # 'address', 'authority' or 'simplified'


class Geocoder:
    """
    Address/authority to coordinates, never raising on service failures.
    """

    def __init__(self, client, config: GeocoderConfig = None, rng: random.Random = None):
        """
        Initialize the Geocoder.

        Args:
            client: Open SmlouvyAPIClient (anything with an async search_places)
            config: Geocoder configuration
            rng: Random source for the fallback jitter
        """
        self.client = client
        self.config = config or GeocoderConfig()
        self.rng = rng or random.Random()
        self.request_count = 0
        self.fallback_count = 0

    async def geocode(
        self,
        address: Optional[str] = None,
        authority_name: Optional[str] = None
    ) -> Optional[Coordinates]:
        """
        Geocode an address, falling back to the authority name.

        Args:
            address: Postal address of the authority
            authority_name: Name of the contracting authority

        Returns:
            Coordinates, or None when neither input is usable
        """
        variants = self.build_variants(address, authority_name)
        if not variants:
            return None

        for variant in variants:
            outcome, coordinates = await self._attempt(variant.query)

            if outcome == AttemptOutcome.RATE_LIMITED:
                logger.warning(
                    f"Geocoder rate limited, waiting {self.config.rate_limit_backoff}s"
                )
                await asyncio.sleep(self.config.rate_limit_backoff)
                outcome, coordinates = await self._attempt(self.simplest_query(variant.query))

            if outcome == AttemptOutcome.SUCCESS:
                logger.debug(f"Geocoded '{variant.query}' ({variant.source}) -> {coordinates}")
                return coordinates

            logger.debug(f"No coordinates for '{variant.query}' ({variant.source}): {outcome.value}")

        coordinates = self.fallback_coordinates()
        self.fallback_count += 1
        logger.info(
            f"Using approximate coordinates for {address or authority_name}: {coordinates}"
        )
        return coordinates

    async def _attempt(self, query: str) -> Tuple[AttemptOutcome, Optional[Coordinates]]:
        await asyncio.sleep(self.config.request_delay)
        self.request_count += 1

        try:
            results = await self.client.search_places(query, limit=1)
        except RateLimitError:
            return AttemptOutcome.RATE_LIMITED, None
        except Exception as e:
            logger.error(f"Geocoding request for '{query}' failed: {e}")
            return AttemptOutcome.ERROR, None

        if not results:
            return AttemptOutcome.NO_RESULT, None

        try:
            first = results[0]
            return AttemptOutcome.SUCCESS, Coordinates(float(first['lat']), float(first['lon']))
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Malformed geocoder result for '{query}': {e}")
            return AttemptOutcome.ERROR, None

    def build_variants(
        self,
        address: Optional[str],
        authority_name: Optional[str]
    ) -> List[QueryVariant]:
        """
        Ordered, de-duplicated query variants for one lookup.

        Args:
            address: Postal address, may be None
            authority_name: Authority name, may be None or the sentinel

        Returns:
            At most config.max_variants variants; empty when nothing is usable
        """
        address = (address or "").strip()
        authority = (authority_name or "").strip()
        if authority == NOT_SPECIFIED:
            authority = ""

        variants: List[QueryVariant] = []

        if address:
            primary = QueryVariant(self._with_country(self.simplify_address(address)), 'address')
        elif authority:
            primary = QueryVariant(self._with_country(self.extract_city(authority)), 'authority')
        else:
            return []
        variants.append(primary)

        if address and authority:
            variants.append(
                QueryVariant(self._with_country(self.extract_city(authority)), 'authority')
            )

        if ',' in primary.query:
            head = primary.query.split(',', 1)[0].strip()
            if head:
                variants.append(QueryVariant(self._with_country(head), 'simplified'))

        unique: List[QueryVariant] = []
        seen = set()
        for variant in variants:
            if variant.query not in seen:
                seen.add(variant.query)
                unique.append(variant)
        return unique[:self.config.max_variants]

    def _with_country(self, query: str) -> str:
        if self.config.country_name.lower() in query.lower():
            return query
        return f"{query}, {self.config.country_name}"

    def simplify_address(self, address: str) -> str:
        """Shorten long addresses after the postal code, else before the first comma."""
        address = re.sub(r'\s+', ' ', address).strip()
        if len(address) <= self.config.max_address_length:
            return address

        match = POSTAL_CODE_PATTERN.search(address)
        if match:
            return address[:match.end()].strip(' ,')
        return address.split(',', 1)[0].strip()

    @staticmethod
    def extract_city(authority_name: str) -> str:
        """Best-effort municipality name from an authority name."""
        for pattern in CITY_PATTERNS:
            match = pattern.search(authority_name)
            if match:
                return match.group(1).strip()
        return authority_name

    @staticmethod
    def simplest_query(query: str) -> str:
        return query.split(',', 1)[0].strip() or query

    def fallback_coordinates(self) -> Coordinates:
        lat, lng = self.config.centroid
        lat_jitter, lng_jitter = self.config.jitter
        return Coordinates(
            lat + self.rng.uniform(-lat_jitter, lat_jitter),
            lng + self.rng.uniform(-lng_jitter, lng_jitter),
        )
