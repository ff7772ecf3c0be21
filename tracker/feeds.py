"""
Upstream HTTP feeds.

- AircraftFeed: ADS-B Exchange traffic around a point (RapidAPI), carries
  the remaining-request quota header.
- DaylightFeed: sunrise/sunset times from sunrise-sunset.org.
- OpenSkyFeed: OpenSky state vectors for a list of hex codes (OAuth2 client
  credentials flow).

Every feed parses and validates at this boundary and raises UpstreamError
(or RateLimited) instead of returning partial data.
"""

import time
import logging
from datetime import date
from typing import Optional, Iterable

import requests

from contracts.constants import (
    HEADER_REQUESTS_REMAINING,
    HEADER_RETRY_AFTER,
    HEADER_OPENSKY_RETRY_AFTER,
    PROVIDER_ADSBX,
    PROVIDER_OPENSKY,
)
from contracts.validation import (
    FeedResult,
    Sighting,
    SunTimes,
    validate_adsbx_record,
    validate_opensky_state,
    validate_sun_times,
)
from tracker.errors import RateLimited, UpstreamError
from tracker.metrics import POLLS_TOTAL, SIGHTINGS_REJECTED

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 30
DEFAULT_RETRY_AFTER_SECONDS = 60

SUNRISE_SUNSET_URL = "https://api.sunrise-sunset.org/json"
OPENSKY_STATES_URL = "https://opensky-network.org/api/states/all"
OPENSKY_TOKEN_URL = "https://auth.opensky-network.org/auth/realms/opensky-network/protocol/openid-connect/token"
TOKEN_REFRESH_BUFFER_SECONDS = 300  # Refresh 5 minutes before expiry (tokens last 30 min)


def _parse_int_header(value: Optional[str]) -> Optional[int]:
    if value is None or str(value).strip() == "":
        return None
    try:
        return int(float(value))
    except ValueError:
        logger.warning(f"Ignoring non-numeric header value: {value!r}")
        return None


def _get(session: requests.Session, provider: str, url: str, **kwargs) -> requests.Response:
    """GET with transport errors mapped to UpstreamError."""
    try:
        return session.get(url, timeout=REQUEST_TIMEOUT_SECONDS, **kwargs)
    except requests.exceptions.Timeout as e:
        POLLS_TOTAL.labels(provider=provider, status="timeout").inc()
        raise UpstreamError(f"{provider} timeout") from e
    except requests.exceptions.RequestException as e:
        POLLS_TOTAL.labels(provider=provider, status="connection_error").inc()
        raise UpstreamError(f"{provider} connection error: {e}") from e


def _json(response: requests.Response, provider: str):
    try:
        return response.json()
    except ValueError as e:
        POLLS_TOTAL.labels(provider=provider, status="bad_payload").inc()
        raise UpstreamError(f"{provider} returned invalid JSON") from e


def _json_object(response: requests.Response, provider: str) -> dict:
    data = _json(response, provider)
    if not isinstance(data, dict):
        POLLS_TOTAL.labels(provider=provider, status="bad_payload").inc()
        raise UpstreamError(f"{provider} returned {type(data).__name__}, expected an object")
    return data


# ============================================
# Aircraft Feed (ADS-B Exchange via RapidAPI)
# ============================================

class AircraftFeed:
    """Client for the ADS-B Exchange traffic endpoint."""

    def __init__(self, api_key: Optional[str], host: str, session: Optional[requests.Session] = None):
        self.api_key = api_key
        self.host = host
        self.session = session or requests.Session()

    def fetch(self, lat: float, lon: float, radius: int) -> FeedResult:
        """
        Fetch aircraft within ``radius`` nautical miles of (lat, lon).

        Raises:
            RateLimited: on HTTP 429
            UpstreamError: on any other non-200 status or transport failure
        """
        url = f"https://{self.host}/api/aircraft/json/lat/{lat}/lon/{lon}/dist/{radius}/"
        headers = {
            "X-RapidAPI-Key": self.api_key or "",
            "X-RapidAPI-Host": self.host,
        }
        response = _get(self.session, PROVIDER_ADSBX, url, headers=headers)

        if response.status_code == 429:
            POLLS_TOTAL.labels(provider=PROVIDER_ADSBX, status="rate_limited").inc()
            retry_after = _parse_int_header(response.headers.get(HEADER_RETRY_AFTER))
            raise RateLimited(retry_after or DEFAULT_RETRY_AFTER_SECONDS, PROVIDER_ADSBX)

        if response.status_code != 200:
            POLLS_TOTAL.labels(provider=PROVIDER_ADSBX, status="error").inc()
            raise UpstreamError(f"{PROVIDER_ADSBX} API error: HTTP {response.status_code}")

        data = _json_object(response, PROVIDER_ADSBX)
        POLLS_TOTAL.labels(provider=PROVIDER_ADSBX, status="success").inc()

        records = []
        rejected = 0
        for raw in data.get("ac") or []:
            is_valid, sighting, error = validate_adsbx_record(raw)
            if not is_valid:
                rejected += 1
                SIGHTINGS_REJECTED.labels(reason="invalid").inc()
                logger.warning(f"Invalid aircraft record: {error}")
                continue
            records.append(sighting)

        return FeedResult(
            records=records,
            quota_remaining=_parse_int_header(response.headers.get(HEADER_REQUESTS_REMAINING)),
            rejected=rejected,
        )


# ============================================
# Daylight Feed (sunrise-sunset.org)
# ============================================

class DaylightFeed:
    """Client for the sunrise-sunset.org API."""

    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or requests.Session()

    def lookup(self, lat: float, lon: float, day: date) -> SunTimes:
        params = {"lat": lat, "lng": lon, "date": day.isoformat(), "formatted": 0}
        response = _get(self.session, "sunrise-sunset", SUNRISE_SUNSET_URL, params=params)
        if response.status_code != 200:
            raise UpstreamError(f"sunrise-sunset API error: HTTP {response.status_code}")

        data = _json(response, "sunrise-sunset")
        if not isinstance(data, dict) or data.get("status") != "OK":
            status = data.get("status") if isinstance(data, dict) else None
            raise UpstreamError(f"sunrise-sunset returned status {status}")

        is_valid, sun_times, error = validate_sun_times(data.get("results") or {})
        if not is_valid:
            raise UpstreamError(f"sunrise-sunset payload invalid: {error}")
        return sun_times


# ============================================
# OpenSky Feed (OAuth2 Client Credentials Flow)
# ============================================

class OpenSkyFeed:
    """Client for OpenSky state vectors of specific aircraft."""

    def __init__(self, client_id: Optional[str], client_secret: Optional[str],
                 session: Optional[requests.Session] = None):
        self.client_id = client_id
        self.client_secret = client_secret
        self.session = session or requests.Session()

        # OAuth2 token state
        self._access_token: Optional[str] = None
        self._token_expires_at: float = 0  # Unix timestamp when token expires

    def _refresh_token(self) -> bool:
        """
        Obtain a new OAuth2 access token using client credentials flow.

        Returns:
            True if token was successfully obtained, False otherwise.
        """
        if not self.client_id or not self.client_secret:
            return False

        try:
            response = self.session.post(
                OPENSKY_TOKEN_URL,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret
                },
                timeout=REQUEST_TIMEOUT_SECONDS
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Token refresh request failed: {e}")
            return False

        if response.status_code != 200:
            logger.error(f"Failed to obtain OAuth2 token: HTTP {response.status_code}")
            return False

        try:
            token_data = response.json()
            access_token = token_data.get("access_token")
            expires_in = float(token_data.get("expires_in", 1800))
        except (ValueError, AttributeError, TypeError) as e:
            logger.error(f"Unreadable OAuth2 token response: {e}")
            return False

        self._access_token = access_token
        self._token_expires_at = time.time() + expires_in
        logger.info(f"OAuth2 token obtained. Expires in {expires_in}s")
        return True

    def _auth_headers(self) -> dict:
        if self.client_id and self.client_secret:
            if self._access_token is None or self._token_expires_at - time.time() <= TOKEN_REFRESH_BUFFER_SECONDS:
                self._refresh_token()
        if self._access_token:
            return {"Authorization": f"Bearer {self._access_token}"}
        return {}

    def states_for_hexes(self, hex_codes: Iterable[str]) -> list[Sighting]:
        """
        Fetch current state vectors for the given hex codes.

        An empty list means none of the aircraft are currently reported.
        """
        icao24 = sorted(h.lower() for h in hex_codes if h)
        if not icao24:
            return []

        response = _get(self.session, PROVIDER_OPENSKY, OPENSKY_STATES_URL,
                        params={"icao24": icao24}, headers=self._auth_headers())

        if response.status_code == 404:
            POLLS_TOTAL.labels(provider=PROVIDER_OPENSKY, status="not_found").inc()
            return []

        if response.status_code == 429:
            POLLS_TOTAL.labels(provider=PROVIDER_OPENSKY, status="rate_limited").inc()
            retry_after = _parse_int_header(response.headers.get(HEADER_OPENSKY_RETRY_AFTER))
            raise RateLimited(retry_after or DEFAULT_RETRY_AFTER_SECONDS, PROVIDER_OPENSKY)

        if response.status_code != 200:
            POLLS_TOTAL.labels(provider=PROVIDER_OPENSKY, status="error").inc()
            raise UpstreamError(f"{PROVIDER_OPENSKY} API error: HTTP {response.status_code}")

        data = _json_object(response, PROVIDER_OPENSKY)
        POLLS_TOTAL.labels(provider=PROVIDER_OPENSKY, status="success").inc()

        sightings = []
        for state in data.get("states") or []:
            is_valid, sighting, error = validate_opensky_state(state)
            if not is_valid:
                SIGHTINGS_REJECTED.labels(reason="invalid").inc()
                logger.warning(f"Invalid OpenSky state: {error}")
                continue
            sightings.append(sighting)
        return sightings
