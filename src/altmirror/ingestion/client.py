from __future__ import annotations

import random
import time
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Union

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config.settings import API_BASE_URL, DEFAULT_LOCALE, ITEMS_PER_PAGE
from ..errors import CatalogRequestError, RateLimitExceeded
from ..sync.models import Pricing
from ..utils.logging import get_logger
from .facets import FilterCombination
from .parse import CARD_PATH_PREFIX, extract_card_id, pricing_from_stat

logger = get_logger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; altmirror/0.1)",
    "Accept": "application/ld+json, application/json;q=0.9",
    "Content-Type": "application/json",
}

Params = Union[Dict[str, str], Sequence[Tuple[str, str]], None]


def hydra_members(page: Dict[str, Any]) -> List[Dict[str, Any]]:
    members = page.get("hydra:member") or []
    return [m for m in members if isinstance(m, dict)]


def hydra_next(page: Dict[str, Any]) -> Optional[str]:
    view = page.get("hydra:view") or {}
    if not isinstance(view, dict):
        return None
    return view.get("hydra:next") or None


class CatalogClient:
    """Client for the Altered catalog API.

    429 answers are retried here with exponential backoff plus jitter, at most
    ``max_retries`` times, then :class:`RateLimitExceeded` is raised.  5xx
    answers are retried by the transport adapter.  Every other failure raises
    :class:`CatalogRequestError`; deciding what to skip is the caller's job.
    """

    def __init__(
        self,
        base_url: str = API_BASE_URL,
        locale: str = DEFAULT_LOCALE,
        token: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout_s: float = 20,
        max_retries: int = 3,
        server_retries: int = 2,
        backoff_base: float = 2.0,
        page_delay: Tuple[float, float] = (0.1, 0.2),
        items_per_page: int = ITEMS_PER_PAGE,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.locale = locale
        self.token = token
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.page_delay = page_delay
        self.items_per_page = items_per_page
        self._sleep = sleep
        self._rng = rng or random.Random()
        if session is None:
            session = requests.Session()
            retry = Retry(
                total=server_retries,
                backoff_factor=1.0,
                status_forcelist=[500, 502, 503, 504],
                allowed_methods=["GET"],
                raise_on_status=False,
                # 5xx retries keep their own backoff; 429 is handled in _get.
                respect_retry_after_header=False,
            )
            adapter = HTTPAdapter(max_retries=retry)
            session.mount("http://", adapter)
            session.mount("https://", adapter)
        self.session = session

    def _headers(self) -> Dict[str, str]:
        headers = dict(DEFAULT_HEADERS)
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _url(self, path_or_url: str) -> str:
        if path_or_url.startswith(("http://", "https://")):
            return path_or_url
        if not path_or_url.startswith("/"):
            path_or_url = "/" + path_or_url
        return f"{self.base_url}{path_or_url}"

    def backoff_delay(self, attempt: int) -> float:
        return self.backoff_base ** attempt + self._rng.uniform(0.0, 1.0)

    def get_json(self, url: str, params: Params = None) -> Dict[str, Any]:
        attempt = 0
        while True:
            try:
                resp = self.session.get(url, params=params, headers=self._headers(), timeout=self.timeout_s)
            except requests.RequestException as exc:
                raise CatalogRequestError(f"Request to {url} failed: {exc}", url=url) from exc

            status = resp.status_code
            if status == 429:
                if attempt >= self.max_retries:
                    raise RateLimitExceeded(
                        f"Rate limited on {url} after {self.max_retries} retries", status=status, url=url
                    )
                delay = self.backoff_delay(attempt)
                attempt += 1
                logger.warning(
                    "Rate limited on %s, retrying in %.1fs (attempt %d/%d)",
                    url, delay, attempt, self.max_retries,
                )
                self._sleep(delay)
                continue
            if status >= 400:
                raise CatalogRequestError(f"HTTP {status} for {url}", status=status, url=url)

            try:
                payload = resp.json()
            except ValueError as exc:
                raise CatalogRequestError(f"Invalid JSON from {url}", status=status, url=url) from exc
            if not isinstance(payload, dict):
                raise CatalogRequestError(f"Unexpected payload type from {url}", status=status, url=url)
            return payload

    def _polite_page_sleep(self) -> None:
        low, high = self.page_delay
        self._sleep(self._rng.uniform(low, high))

    def iter_pages(self, path: str, params: Params = None) -> Iterator[Dict[str, Any]]:
        """Lazily walk a hydra collection until a page has no next cursor.

        The next cursor is a path that already carries the query string, so
        ``params`` only applies to the first request.
        """
        url: Optional[str] = self._url(path)
        query = params
        first = True
        while url:
            if not first:
                logger.debug("Fetching next page: %s", url)
                self._polite_page_sleep()
            page = self.get_json(url, params=query)
            yield page
            next_ref = hydra_next(page)
            url = self._url(next_ref) if next_ref else None
            query = None
            first = False

    def fetch_list(self, combination: FilterCombination) -> List[Dict[str, Any]]:
        params = combination.to_params(self.locale, self.items_per_page)
        cards: List[Dict[str, Any]] = []
        for page in self.iter_pages("/cards", params):
            cards.extend(hydra_members(page))
        logger.debug("Fetched %d cards for %s", len(cards), combination.key)
        return cards

    def fetch_stats(self, combination: FilterCombination) -> Dict[str, Pricing]:
        """Marketplace pricing for the combination, keyed by card ``@id``."""
        params = combination.to_params(self.locale, self.items_per_page)
        stats: Dict[str, Pricing] = {}
        for page in self.iter_pages("/cards/stats", params):
            for item in hydra_members(page):
                ref = item.get("@id")
                if not ref:
                    continue
                stats[str(ref)] = pricing_from_stat(item)
        return stats

    def fetch_detail(self, entity_ref: str) -> Dict[str, Any]:
        card_id = extract_card_id(entity_ref)
        if not card_id:
            raise CatalogRequestError(f"Empty card reference: {entity_ref!r}")
        url = self._url(f"{CARD_PATH_PREFIX}{card_id}")
        return self.get_json(url, params={"locale": self.locale})
