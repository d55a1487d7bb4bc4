"""HTTP retrieval of the course calendar feed."""
import logging
import time
from typing import Optional

import requests

logger = logging.getLogger(__name__)


class FetchError(Exception):
    """Raised when the calendar feed cannot be retrieved."""

    def __init__(
        self,
        url: str,
        reason: str,
        status_code: Optional[int] = None
    ):
        self.url = url
        self.reason = reason
        self.status_code = status_code
        if status_code is not None:
            message = f"Failed to fetch {url}: HTTP {status_code} {reason}"
        else:
            message = f"Failed to fetch {url}: {reason}"
        super().__init__(message)


class IcsFeedFetcher:
    """Fetcher for iCalendar feeds served over HTTP."""

    def __init__(self, timeout: int = 30, max_retries: int = 1, base_delay: float = 1):
        """
        Initialize the feed fetcher.

        Args:
            timeout: HTTP request timeout in seconds (default: 30)
            max_retries: Total number of attempts (default: 1, no retry)
            base_delay: Initial backoff delay in seconds between attempts
        """
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.base_delay = base_delay

    def fetch(self, url: str) -> str:
        """
        Fetch the feed text.

        Args:
            url: Feed URL

        Returns:
            Feed body as text

        Raises:
            FetchError: If the final attempt fails or returns a non-2xx status
        """
        if not url:
            raise FetchError(url, 'No feed URL configured')

        for attempt in range(self.max_retries):
            try:
                logger.info(f"Fetching calendar feed (attempt {attempt + 1}/{self.max_retries})")
                response = requests.get(url, timeout=self.timeout)
                response.raise_for_status()
                logger.info(f"Fetched {len(response.text)} characters from feed")
                return response.text

            except requests.RequestException as e:
                if attempt < self.max_retries - 1:
                    delay = self.base_delay * (2 ** attempt)
                    logger.warning(
                        f"Request failed (attempt {attempt + 1}/{self.max_retries}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                    continue

                logger.error(
                    f"All {self.max_retries} attempts failed. Last error: {e}"
                )
                raise self._to_fetch_error(url, e) from e

    def _to_fetch_error(self, url: str, error: requests.RequestException) -> FetchError:
        response = getattr(error, 'response', None)
        if response is not None:
            return FetchError(url, response.reason or str(error), response.status_code)
        return FetchError(url, str(error) or type(error).__name__)
