"""Octopus Energy tariff API client.

Resolves a postcode to a pricing region and fetches half-hourly Agile
unit rates for that region.

Region lookup degrades to the default region on any failure, since the
rest of the app can still show prices. Rate fetches never degrade: a
partial or empty series must not be mistaken for authoritative data.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable

import httpx

from ..config import DEFAULT_PRODUCT_CODE
from ..errors import NetworkError, ParseError
from ..models import AgileProduct, RateRecord

logger = logging.getLogger(__name__)

API_BASE_URL = "https://api.octopus.energy/v1"
DEFAULT_REGION = "H"
REQUEST_TIMEOUT = 30.0  # seconds
MAX_REGION_RETRIES = 3
RETRY_BACKOFF_SECONDS = 1.0  # multiplied by the attempt number
DEFAULT_PAGE_SIZE = 1500
DEFAULT_MAX_PAGES = 1

# Connection dropped or aborted while a request was in flight
RETRYABLE_ERRORS = (httpx.ReadError, httpx.WriteError, httpx.RemoteProtocolError)


def normalize_postcode(postcode: str | None) -> str:
    """Strip all whitespace and upper-case, e.g. ' sw1a 1aa ' -> 'SW1A1AA'."""
    if not postcode:
        return ""
    return "".join(postcode.split()).upper()


def parse_timestamp(value: Any) -> datetime:
    """Parse a strict ISO-8601 timestamp with an explicit offset, returned in UTC."""
    if not isinstance(value, str):
        raise ParseError(f"Expected ISO-8601 timestamp string, got {value!r}")
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ParseError(f"Invalid timestamp {value!r}") from exc
    if parsed.tzinfo is None:
        raise ParseError(f"Timestamp {value!r} has no UTC offset")
    return parsed.astimezone(timezone.utc)


def _parse_price(item: dict, key: str) -> float:
    value = item.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ParseError(f"Invalid {key} {value!r}")
    return float(value)


def parse_rate(item: Any) -> RateRecord:
    """Convert one API result row to a RateRecord."""
    if not isinstance(item, dict):
        raise ParseError(f"Expected rate object, got {item!r}")
    valid_from = parse_timestamp(item.get("valid_from"))
    valid_to = parse_timestamp(item.get("valid_to"))
    if valid_from >= valid_to:
        raise ParseError(f"Rate interval {valid_from} -> {valid_to} is empty")
    return RateRecord(
        valid_from=valid_from,
        valid_to=valid_to,
        value_exc_vat=_parse_price(item, "value_exc_vat"),
        value_inc_vat=_parse_price(item, "value_inc_vat"),
    )


def _json_body(response: httpx.Response) -> dict:
    try:
        data = response.json()
    except ValueError as exc:
        raise ParseError(f"Response from {response.url} is not JSON") from exc
    if not isinstance(data, dict):
        raise ParseError(f"Unexpected response shape from {response.url}")
    return data


class OctopusClient:
    """Client for the parts of the Octopus API the rate pipeline needs."""

    def __init__(
        self,
        product_code: str = DEFAULT_PRODUCT_CODE,
        base_url: str = API_BASE_URL,
        timeout: float = REQUEST_TIMEOUT,
        max_pages: int = DEFAULT_MAX_PAGES,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.product_code = product_code
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_pages = max_pages
        self._transport = transport
        self._sleep = sleep

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self.timeout, transport=self._transport)

    def resolve_region(self, postcode: str | None) -> str:
        """Look up the pricing region for a postcode.

        Falls back to DEFAULT_REGION for an empty postcode (without a network
        call) and for any lookup failure. Requests aborted mid-flight are
        retried up to MAX_REGION_RETRIES times with a linear backoff.
        """
        cleaned = normalize_postcode(postcode)
        if not cleaned:
            return DEFAULT_REGION

        url = f"{self.base_url}/industry/grid-supply-points/"

        with self._client() as client:
            for attempt in range(MAX_REGION_RETRIES + 1):
                try:
                    response = client.get(url, params={"postcode": cleaned})
                except RETRYABLE_ERRORS as exc:
                    if attempt < MAX_REGION_RETRIES:
                        delay = RETRY_BACKOFF_SECONDS * (attempt + 1)
                        logger.info(
                            "Region lookup interrupted (%s), retry %d/%d in %.0fs",
                            exc, attempt + 1, MAX_REGION_RETRIES, delay,
                        )
                        self._sleep(delay)
                        continue
                    logger.warning(
                        "Region lookup for %s failed after %d retries, using region %s",
                        cleaned, MAX_REGION_RETRIES, DEFAULT_REGION,
                    )
                    return DEFAULT_REGION
                except httpx.HTTPError as exc:
                    logger.warning("Region lookup for %s failed (%s), using region %s", cleaned, exc, DEFAULT_REGION)
                    return DEFAULT_REGION
                break

        if not response.is_success:
            logger.warning(
                "Region lookup for %s returned HTTP %d, using region %s",
                cleaned, response.status_code, DEFAULT_REGION,
            )
            return DEFAULT_REGION

        try:
            results = _json_body(response).get("results") or []
            group_id = results[0]["group_id"] if results else None
        except (ParseError, KeyError, TypeError) as exc:
            logger.warning("Unreadable region lookup for %s (%s), using region %s", cleaned, exc, DEFAULT_REGION)
            return DEFAULT_REGION

        if not isinstance(group_id, str) or not group_id.replace("_", ""):
            logger.warning("No supply point found for %s, using region %s", cleaned, DEFAULT_REGION)
            return DEFAULT_REGION

        return group_id.replace("_", "")

    def rates_url(self, region: str) -> str:
        tariff_code = f"E-1R-{self.product_code}-{region}"
        return (
            f"{self.base_url}/products/{self.product_code}"
            f"/electricity-tariffs/{tariff_code}/standard-unit-rates/"
        )

    def fetch_rates(
        self,
        region: str,
        period_from: datetime | None = None,
        period_to: datetime | None = None,
    ) -> list[RateRecord]:
        """Fetch the unit-rate series for a region, ascending by start time.

        Raises NetworkError on transport failures or non-2xx responses and
        ParseError if any row cannot be decoded. No partial result is returned.
        """
        params: dict[str, Any] = {"page_size": DEFAULT_PAGE_SIZE}
        if period_from is not None:
            params["period_from"] = period_from.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
        if period_to is not None:
            params["period_to"] = period_to.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")

        url: str | None = self.rates_url(region)
        records: list[RateRecord] = []
        pages = 0

        with self._client() as client:
            while url and pages < self.max_pages:
                data = self._get_json(client, url, params if pages == 0 else None)
                results = data.get("results")
                if not isinstance(results, list):
                    raise ParseError(f"Rate response for region {region} has no results list")
                records.extend(parse_rate(item) for item in results)
                url = data.get("next")
                if url is not None and not isinstance(url, str):
                    raise ParseError(f"Rate response for region {region} has an invalid next link {url!r}")
                pages += 1

        logger.info("Fetched %d rates for region %s over %d page(s)", len(records), region, pages)
        return sorted(records, key=lambda r: r.valid_from)

    def find_agile_product(self) -> AgileProduct:
        """Find the current Agile import product from the product list."""
        with self._client() as client:
            data = self._get_json(client, f"{self.base_url}/products/")

        for item in data.get("results") or []:
            try:
                code = item["code"]
                direction = item.get("direction", "")
                if code.upper().startswith("AGILE-") and direction.upper() == "IMPORT":
                    return AgileProduct(
                        code=code,
                        full_name=item.get("full_name", ""),
                        display_name=item.get("display_name", ""),
                        description=item.get("description", ""),
                    )
            except (KeyError, TypeError, AttributeError) as exc:
                raise ParseError(f"Malformed product entry {item!r}") from exc

        raise ParseError("No Agile import product found")

    def _get_json(self, client: httpx.Client, url: str, params: dict | None = None) -> dict:
        try:
            response = client.get(url, params=params)
        except httpx.InvalidURL as exc:
            raise ParseError(f"Invalid URL {url!r}: {exc}") from exc
        except httpx.HTTPError as exc:
            raise NetworkError(f"Request to {url} failed: {exc}") from exc
        if not response.is_success:
            raise NetworkError(f"Request to {url} returned HTTP {response.status_code}")
        return _json_body(response)
