"""
Best-effort weather lookup for a course location (OpenWeatherMap current weather).

Failures are logged and reported as ``None``; a missing weather section must
never stop a course page from rendering.
"""
from __future__ import annotations

import http.client
import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import asdict, dataclass
from typing import Any

logger = logging.getLogger(__name__)


class WeatherError(RuntimeError):
    pass


@dataclass(frozen=True)
class WeatherReport:
    clouds: str | None
    wind_speed: float | None
    wind_direction: float | None
    visibility_km: float | None
    humidity: float | None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def parse_report(payload: dict[str, Any]) -> WeatherReport:
    conditions = payload.get("weather")
    if not isinstance(conditions, list):
        conditions = []
    wind = payload.get("wind") or {}
    main = payload.get("main") or {}
    visibility = payload.get("visibility")
    return WeatherReport(
        clouds=conditions[0].get("description") if conditions else None,
        wind_speed=wind.get("speed"),
        wind_direction=wind.get("deg"),
        visibility_km=visibility / 1000 if isinstance(visibility, (int, float)) else None,
        humidity=main.get("humidity"),
    )


@dataclass(frozen=True)
class WeatherClient:
    api_key: str
    base_url: str = "https://api.openweathermap.org/data/2.5"
    timeout_seconds: int = 10

    def request_json(self, path: str, *, params: dict[str, Any]) -> dict[str, Any]:
        query = {k: v for k, v in params.items() if v is not None}
        query["appid"] = self.api_key
        url = self.base_url.rstrip("/") + path + "?" + urllib.parse.urlencode(query)
        try:
            req = urllib.request.Request(url, method="GET", headers={"Accept": "application/json"})
            with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                status = getattr(resp, "status", 200)
                if status != 200:
                    raise WeatherError(f"HTTP {status} from weather provider")
                raw = resp.read()
        except urllib.error.HTTPError as e:
            raise WeatherError(f"HTTP {e.code} from weather provider") from e
        except (urllib.error.URLError, http.client.HTTPException, OSError) as e:
            raise WeatherError(f"Weather provider unreachable: {e}") from e
        except ValueError as e:
            raise WeatherError(f"Bad weather provider URL {self.base_url!r}: {e}") from e
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise WeatherError(f"Invalid JSON from weather provider ({path})") from e
        if not isinstance(data, dict):
            raise WeatherError(f"Unexpected payload from weather provider ({path})")
        return data

    def fetch(self, longitude: float, latitude: float) -> WeatherReport | None:
        try:
            data = self.request_json("/weather", params={"lat": latitude, "lon": longitude})
            return parse_report(data)
        except (WeatherError, AttributeError, TypeError, LookupError, ValueError) as e:
            logger.warning("Could not find weather at lon=%s lat=%s: %s", longitude, latitude, e)
            return None


def weather_client_from_config(config: dict) -> WeatherClient | None:
    api_key = (config.get("WEATHER_API_KEY") or "").strip()
    if not api_key:
        return None
    return WeatherClient(
        api_key=api_key,
        base_url=(config.get("WEATHER_BASE_URL") or WeatherClient.base_url).strip(),
        timeout_seconds=int(config.get("WEATHER_TIMEOUT_SECONDS") or 10),
    )
