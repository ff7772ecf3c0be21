"""
PostgreSQL storage for aircraft records, sighting history, settings and the
operational log.
"""

import json
import logging
import contextlib
from datetime import datetime
from typing import Iterable, Optional

import psycopg

from contracts.constants import (
    INITIAL_REQUEST_COUNT,
    LOG_LEVEL_INFO,
    SETTING_HEX_CODE,
    SETTING_REG_NUM,
    SETTING_REQUEST_COUNT,
    SETTING_TYPE_CODE,
)
from contracts.validation import AircraftId, DaylightWindow, Sighting, WatchList
from tracker.errors import StorageError

logger = logging.getLogger(__name__)

SCHEMA_STATEMENTS = (
    """
    create table if not exists settings (
        id int generated always as identity,
        setting_type varchar(32),
        setting_value text,
        date_modified timestamptz default now()
    )
    """,
    """
    create table if not exists log (
        id int generated always as identity,
        log_type varchar(32),
        log_value text,
        detail text,
        date_created timestamptz default now()
    )
    """,
    """
    create table if not exists aircraft (
        id int generated always as identity,
        type_code text,
        reg_num varchar(16),
        hex_code varchar(8),
        count int,
        flagged bool,
        current bool,
        date_modified timestamptz,
        date_created timestamptz default now()
    )
    """,
    """
    create table if not exists aircraft_history (
        id int generated always as identity,
        aircraft_id int,
        speed numeric,
        altitude numeric,
        lat numeric,
        lon numeric,
        track numeric,
        callsign varchar(32),
        distance numeric,
        source varchar(16),
        date_created timestamptz default now()
    )
    """,
)


class Database:
    """psycopg-backed storage. Every public method raises StorageError on failure."""

    def __init__(self, database_url: str):
        self.database_url = database_url
        self.conn: Optional[psycopg.Connection] = None

    def connect(self):
        if self.conn is not None and not self.conn.closed:
            return self.conn
        try:
            self.conn = psycopg.connect(self.database_url)
        except psycopg.Error as e:
            raise StorageError(f"Database connection failed: {e}") from e
        logger.info("Database connection established")
        return self.conn

    def close(self):
        if self.conn is not None:
            with contextlib.suppress(psycopg.Error):
                self.conn.close()
            self.conn = None

    @contextlib.contextmanager
    def _cursor(self):
        conn = self.connect()
        try:
            with conn.cursor() as cur:
                yield cur
            conn.commit()
        except psycopg.Error as e:
            with contextlib.suppress(psycopg.Error):
                conn.rollback()
            raise StorageError(str(e)) from e

    # ----------------------------------------------------------------- schema

    def init_schema(self):
        """Create tables if missing and seed the request counter."""
        with self._cursor() as cur:
            for statement in SCHEMA_STATEMENTS:
                cur.execute(statement)
            cur.execute("""
                insert into settings (setting_type, setting_value)
                select %s, %s
                where not exists (select 1 from settings where setting_type = %s)
            """, (SETTING_REQUEST_COUNT, str(INITIAL_REQUEST_COUNT), SETTING_REQUEST_COUNT))

    def _has_table(self, cur, table_name: str) -> bool:
        cur.execute("select to_regclass(%s)", (table_name,))
        return cur.fetchone()[0] is not None

    # --------------------------------------------------------------- settings

    def get_watch_list(self) -> WatchList:
        type_codes = set()
        aircraft = set()
        with self._cursor() as cur:
            if self._has_table(cur, "aircraft_registration"):
                cur.execute("""
                    select s.setting_type, s.setting_value, trim(ar."MODE S CODE HEX")
                    from settings s
                    left join aircraft_registration ar
                        on s.setting_type = %s and s.setting_value = concat('N', ar."N-NUMBER")
                    where s.setting_type in (%s, %s, %s)
                """, (SETTING_REG_NUM, SETTING_TYPE_CODE, SETTING_REG_NUM, SETTING_HEX_CODE))
            else:
                cur.execute("""
                    select setting_type, setting_value, null
                    from settings
                    where setting_type in (%s, %s, %s)
                """, (SETTING_TYPE_CODE, SETTING_REG_NUM, SETTING_HEX_CODE))
            rows = cur.fetchall()

        for setting_type, value, hex_code in rows:
            if not value:
                continue
            if setting_type == SETTING_TYPE_CODE:
                type_codes.add(value)
            elif setting_type == SETTING_REG_NUM:
                aircraft.add(AircraftId(registration=value, hex_code=hex_code))
            elif setting_type == SETTING_HEX_CODE:
                aircraft.add(AircraftId(hex_code=value))
        return WatchList(type_codes=type_codes, aircraft=aircraft)

    def type_for(self, registration: Optional[str] = None, hex_code: Optional[str] = None) -> Optional[str]:
        """
        Manufacturer and model from the FAA registry, looked up by tail
        number (leading "N" optional) or, failing that, by Mode S hex code.
        None when the registry tables are absent or hold no match.
        """
        if registration:
            column, value = '"N-NUMBER"', registration.strip().upper()
            if value.startswith("N"):
                value = value[1:]
        elif hex_code:
            column, value = '"MODE S CODE HEX"', hex_code.strip().upper()
        else:
            return None

        with self._cursor() as cur:
            if not (self._has_table(cur, "aircraft_registration") and self._has_table(cur, "aircraft_reference")):
                return None
            cur.execute(f"""
                select trim(ref.mfr), trim(ref.model)
                from aircraft_registration ar
                join aircraft_reference ref on ar."MFR MDL CODE" = ref.code
                where trim(ar.{column}) = %s
                limit 1
            """, (value,))
            row = cur.fetchone()

        if row is None:
            return None
        return " ".join(part for part in row if part) or None

    def get_request_count(self) -> Optional[int]:
        with self._cursor() as cur:
            cur.execute("select setting_value from settings where setting_type = %s", (SETTING_REQUEST_COUNT,))
            row = cur.fetchone()
        if row is None or row[0] is None:
            return None
        return int(row[0])

    def set_request_count(self, value: int):
        with self._cursor() as cur:
            cur.execute("""
                update settings set setting_value = %s, date_modified = now()
                where setting_type = %s
            """, (str(value), SETTING_REQUEST_COUNT))

    # --------------------------------------------------------------- aircraft

    def _insert_history(self, cur, aircraft_id: int, sighting: Sighting):
        position = sighting.position
        cur.execute("""
            insert into aircraft_history
                (aircraft_id, speed, altitude, lat, lon, track, callsign, distance, source)
            values (%s, %s, %s, %s, %s, %s, %s, %s, %s)
        """, (
            aircraft_id,
            sighting.speed_kts,
            sighting.altitude_ft,
            position.lat if position else None,
            position.lon if position else None,
            sighting.track_deg,
            sighting.callsign,
            sighting.distance_nm,
            sighting.source,
        ))

    def upsert_aircraft(self, sighting: Sighting, notable: bool) -> bool:
        """
        Record a sighting. Returns True on a new appearance: the aircraft
        was unknown or not current, and its count was incremented.
        """
        with self._cursor() as cur:
            cur.execute('select id, current from aircraft where reg_num = %s', (sighting.identity,))
            row = cur.fetchone()
            if row:
                aircraft_id, current = row
                is_new = not current
                cur.execute("""
                    update aircraft set
                        count = count + %s,
                        flagged = %s,
                        current = true,
                        type_code = coalesce(%s, type_code),
                        hex_code = coalesce(%s, hex_code),
                        date_modified = now()
                    where id = %s
                """, (1 if is_new else 0, notable, sighting.type_code, sighting.hex_code, aircraft_id))
            else:
                is_new = True
                cur.execute("""
                    insert into aircraft (type_code, reg_num, hex_code, count, flagged, current, date_modified)
                    values (%s, %s, %s, 1, %s, true, now())
                    returning id
                """, (sighting.type_code, sighting.identity, sighting.hex_code, notable))
                aircraft_id = cur.fetchone()[0]
            self._insert_history(cur, aircraft_id, sighting)
        return is_new

    def append_history(self, sighting: Sighting):
        """Add a history row for an aircraft already upserted this cycle."""
        with self._cursor() as cur:
            cur.execute('select id from aircraft where reg_num = %s', (sighting.identity,))
            row = cur.fetchone()
            if row is None:
                raise StorageError(f"No aircraft record for {sighting.identity}")
            self._insert_history(cur, row[0], sighting)

    def mark_not_current(self, except_keys: Iterable[str] = ()):
        """Clear the current flag on every aircraft not in ``except_keys``."""
        keys = sorted(set(except_keys))
        with self._cursor() as cur:
            if keys:
                cur.execute("""
                    update aircraft set current = false
                    where current = true and not (reg_num = any(%s))
                """, (keys,))
            else:
                cur.execute("update aircraft set current = false where current = true")

    def last_modified(self) -> Optional[datetime]:
        with self._cursor() as cur:
            cur.execute("select max(date_modified) from aircraft")
            row = cur.fetchone()
        return row[0] if row else None

    # -------------------------------------------------------------------- log

    def log(self, level: str, category: str, message: str):
        with self._cursor() as cur:
            cur.execute(
                'insert into log (log_type, log_value, detail) values (%s, %s, %s)',
                (level, category, message)
            )

    def log_daylight(self, window: DaylightWindow):
        self.log(LOG_LEVEL_INFO, "day", json.dumps(window.model_dump(mode="json")))
