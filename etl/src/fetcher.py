"""
Dump Fetcher Module
Responsible for downloading the monthly XML dumps of the contract registry
and caching them on local disk, keyed by file name.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from .api_client import SmlouvyAPIClient, APIConfig

logger = logging.getLogger(__name__)


class DumpFetcher:
    """
    Fetches monthly dumps and keeps them in a local cache directory.
    """

    def __init__(self, output_dir: Path = None, api_config: APIConfig = None):
        """
        Initialize the DumpFetcher.

        Args:
            output_dir: Directory to cache dump files in
            api_config: HTTP client configuration
        """
        if output_dir is None:
            output_dir = Path(tempfile.gettempdir()) / "smlouvy-dumps"

        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

        self.api_config = api_config or APIConfig()

    @staticmethod
    def dump_filename(year: int, month: int) -> str:
        """Name of the published dump for a month, e.g. dump_2024_03.xml."""
        return f"dump_{year}_{month:02d}.xml"

    def dump_url(self, year: int, month: int) -> str:
        return f"{self.api_config.dump_base_url.rstrip('/')}/{self.dump_filename(year, month)}"

    def cached_path(self, year: int, month: int) -> Path:
        return self.output_dir / self.dump_filename(year, month)

    def _save_to_file(self, content: bytes, filepath: Path) -> Path:
        """
        Write a downloaded dump next to its final name, then move it in place.

        Args:
            content: Raw dump bytes
            filepath: Final cache location

        Returns:
            Path to the saved file
        """
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{filepath.name}.", suffix=".part", dir=str(self.output_dir)
        )
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(content)
            os.replace(tmp_name, filepath)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

        logger.info(f"Saved {len(content)} bytes to {filepath}")
        return filepath

    async def fetch_dump(self, year: int, month: int) -> Path:
        """
        Return the local path of a month's dump, downloading it when not cached.

        Args:
            year: Dump year
            month: Dump month (1-12)

        Returns:
            Path to the cached XML file
        """
        filepath = self.cached_path(year, month)

        if filepath.exists():
            logger.info(f"Using cached dump {filepath}")
            return filepath

        logger.info(f"Fetching dump for {year}-{month:02d}")

        async with SmlouvyAPIClient(self.api_config) as client:
            content = await client.download_dump(self.dump_filename(year, month))

        return self._save_to_file(content, filepath)

    def clear_cache(self, year: Optional[int] = None, month: Optional[int] = None) -> int:
        """
        Delete cached dumps.

        Args:
            year: Only this year (with month: only this month)
            month: Only this month

        Returns:
            Number of deleted files
        """
        if year is not None and month is not None:
            candidates = [self.cached_path(year, month)]
        elif year is not None:
            candidates = list(self.output_dir.glob(f"dump_{year}_*.xml"))
        else:
            candidates = list(self.output_dir.glob("dump_*.xml"))

        removed = 0
        for path in candidates:
            if path.exists():
                path.unlink()
                removed += 1

        logger.info(f"Removed {removed} cached dumps from {self.output_dir}")
        return removed
