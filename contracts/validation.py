"""
Validation library for Plane Tracker records.

Provides Pydantic models for everything crossing the upstream boundary.
Upstream feeds deliver stringly-typed fields where "" means "missing";
these models convert such sentinels to ``None`` so nothing downstream
compares against empty strings.
"""

from typing import Optional, Literal, Any
from datetime import datetime, timezone
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from contracts.constants import PROVIDER_ADSBX, PROVIDER_OPENSKY

METERS_TO_FEET = 3.28084
MPS_TO_KNOTS = 1.943844


def _blank_to_none(v: Any) -> Any:
    """Treat empty / whitespace-only strings as missing."""
    if isinstance(v, str):
        v = v.strip()
        return v or None
    return v


# ============================================================================
# Shared Components
# ============================================================================

class Position(BaseModel):
    """Geographic position."""
    lat: float = Field(ge=-90, le=90, description="Latitude in degrees (WGS84)")
    lon: float = Field(ge=-180, le=180, description="Longitude in degrees (WGS84)")


class AircraftId(BaseModel):
    """Identity of a watched aircraft: registration and/or Mode S hex code."""
    model_config = ConfigDict(frozen=True)

    registration: Optional[str] = None
    hex_code: Optional[str] = None

    @field_validator("registration", mode="before")
    @classmethod
    def normalize_registration(cls, v):
        v = _blank_to_none(v)
        return v.upper() if isinstance(v, str) else v

    @field_validator("hex_code", mode="before")
    @classmethod
    def normalize_hex(cls, v):
        """Normalize hex codes to uppercase."""
        v = _blank_to_none(v)
        return v.upper() if isinstance(v, str) else v

    @model_validator(mode="after")
    def require_identity(self):
        if self.registration is None and self.hex_code is None:
            raise ValueError("aircraft needs a registration or a hex code")
        return self


# ============================================================================
# Sighting
# ============================================================================

class Sighting(BaseModel):
    """One observed data point for one aircraft in one poll cycle."""
    registration: Optional[str] = None
    hex_code: Optional[str] = None
    type_code: Optional[str] = None
    position: Optional[Position] = None
    speed_kts: Optional[float] = None
    altitude_ft: Optional[float] = None
    track_deg: Optional[float] = Field(None, ge=0, le=360)
    callsign: Optional[str] = None
    distance_nm: Optional[float] = Field(None, ge=0)
    on_ground: bool = False
    seen_at: Optional[datetime] = None
    source: Literal["adsbx", "opensky"] = PROVIDER_ADSBX

    @field_validator("registration", "hex_code", "type_code", "callsign", mode="before")
    @classmethod
    def strip_text(cls, v):
        return _blank_to_none(v)

    @field_validator("registration", "hex_code")
    @classmethod
    def upper_identity(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v

    @field_validator("speed_kts", "altitude_ft", "track_deg", "distance_nm", mode="before")
    @classmethod
    def parse_number(cls, v):
        """Upstream sends numbers as strings; "" means missing."""
        return _blank_to_none(v)

    @field_validator("on_ground", mode="before")
    @classmethod
    def parse_ground_flag(cls, v):
        v = _blank_to_none(v)
        if v is None:
            return False
        if isinstance(v, str):
            return v.lower() in ("1", "true")
        return bool(v)

    @field_validator("seen_at", mode="before")
    @classmethod
    def parse_seen_at(cls, v):
        """Accept epoch seconds / milliseconds or ISO 8601."""
        v = _blank_to_none(v)
        if v is None or isinstance(v, datetime):
            return v
        if isinstance(v, str) and not v.replace(".", "", 1).isdigit():
            return datetime.fromisoformat(v.replace("Z", "+00:00"))
        ts = float(v)
        if ts > 1e11:
            ts = ts / 1000.0
        return datetime.fromtimestamp(ts, tz=timezone.utc)

    @property
    def identity(self) -> Optional[str]:
        """Registration number, or the hex code when the registration is unknown."""
        return self.registration or self.hex_code

    @property
    def is_usable(self) -> bool:
        return self.identity is not None


# ============================================================================
# Watch-list
# ============================================================================

class WatchList(BaseModel):
    """Notable aircraft: type codes plus registration/hex pairs."""
    model_config = ConfigDict(frozen=True)

    type_codes: frozenset[str] = frozenset()
    aircraft: frozenset[AircraftId] = frozenset()

    @field_validator("type_codes", mode="before")
    @classmethod
    def drop_blank_type_codes(cls, v):
        return frozenset(t.strip() for t in v if t and t.strip())

    @property
    def registrations(self) -> frozenset[str]:
        return frozenset(a.registration for a in self.aircraft if a.registration)

    @property
    def hex_codes(self) -> frozenset[str]:
        return frozenset(a.hex_code for a in self.aircraft if a.hex_code)

    def registration_for_hex(self, hex_code: str) -> Optional[str]:
        for a in self.aircraft:
            if a.hex_code == hex_code.upper():
                return a.registration
        return None

    def __len__(self) -> int:
        return len(self.type_codes) + len(self.aircraft)


# ============================================================================
# Daylight
# ============================================================================

class SunTimes(BaseModel):
    """Sunrise/sunset pair returned by the daylight feed."""
    sunrise: datetime
    sunset: datetime

    @field_validator("sunrise", "sunset")
    @classmethod
    def require_timezone(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class DaylightWindow(BaseModel):
    """Daylight interval for one calendar day."""
    sunrise: datetime
    sunset: datetime
    day: int = Field(ge=1, le=31, description="Day of month the window was computed for")
    fallback: bool = False

    @model_validator(mode="after")
    def check_order(self):
        if self.sunrise >= self.sunset:
            raise ValueError(f"sunrise {self.sunrise} is not before sunset {self.sunset}")
        return self

    def contains(self, now: datetime) -> bool:
        return self.sunrise < now < self.sunset


# ============================================================================
# Feed results
# ============================================================================

class FeedResult(BaseModel):
    """Parsed aircraft feed response."""
    records: list[Sighting] = Field(default_factory=list)
    quota_remaining: Optional[int] = Field(None, ge=0)
    rejected: int = 0

    @field_validator("quota_remaining", mode="before")
    @classmethod
    def parse_quota(cls, v):
        """A missing quota header means "no change"."""
        v = _blank_to_none(v)
        return int(v) if v is not None else None


# ============================================================================
# Validation Functions
# ============================================================================

def validate_adsbx_record(data: dict) -> tuple[bool, Optional[Sighting], Optional[str]]:
    """
    Validate one aircraft record from the ADS-B Exchange traffic feed.

    Returns:
        (is_valid, sighting_or_none, error_message_or_none)
    """
    try:
        lat = _blank_to_none(data.get("lat"))
        lon = _blank_to_none(data.get("lon"))
        sighting = Sighting(
            registration=data.get("reg"),
            hex_code=data.get("icao"),
            type_code=data.get("type"),
            position={"lat": lat, "lon": lon} if lat is not None and lon is not None else None,
            speed_kts=data.get("spd"),
            altitude_ft=data.get("alt"),
            track_deg=data.get("trak"),
            callsign=data.get("call"),
            distance_nm=data.get("dst"),
            on_ground=data.get("gnd"),
            seen_at=data.get("postime"),
            source=PROVIDER_ADSBX,
        )
        return True, sighting, None
    except (ValidationError, AttributeError, TypeError, ValueError) as e:
        return False, None, str(e)


def validate_opensky_state(state: list) -> tuple[bool, Optional[Sighting], Optional[str]]:
    """
    Validate one OpenSky state vector.

    OpenSky reports metric units; they are converted to feet / knots to
    match the primary feed.

    Returns:
        (is_valid, sighting_or_none, error_message_or_none)
    """
    try:
        icao24 = state[0]
        lon, lat = state[5], state[6]
        baro_altitude = state[7]
        velocity = state[9]
        sighting = Sighting(
            hex_code=icao24,
            callsign=state[1],
            position={"lat": lat, "lon": lon} if lat is not None and lon is not None else None,
            altitude_ft=baro_altitude * METERS_TO_FEET if baro_altitude is not None else None,
            on_ground=state[8],
            speed_kts=velocity * MPS_TO_KNOTS if velocity is not None else None,
            track_deg=state[10],
            seen_at=state[3] if state[3] is not None else state[4],
            source=PROVIDER_OPENSKY,
        )
        return True, sighting, None
    except (ValidationError, IndexError, TypeError, ValueError) as e:
        return False, None, str(e)


def validate_sun_times(data: dict) -> tuple[bool, Optional[SunTimes], Optional[str]]:
    """
    Validate a sunrise-sunset.org ``results`` object.

    Returns:
        (is_valid, sun_times_or_none, error_message_or_none)
    """
    try:
        return True, SunTimes(**data), None
    except (ValidationError, TypeError) as e:
        return False, None, str(e)


def validate_watch_list(data: dict) -> tuple[bool, Optional[WatchList], Optional[str]]:
    """
    Validate a watch-list payload.

    Returns:
        (is_valid, watch_list_or_none, error_message_or_none)
    """
    try:
        return True, WatchList(**data), None
    except (ValidationError, TypeError) as e:
        return False, None, str(e)
