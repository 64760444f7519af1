import http.client
import io
import json
import urllib.error

import pytest
from werkzeug.security import generate_password_hash

from app.golfpoi import create_app
from app.golfpoi.db import session_scope
from app.golfpoi.models import Base, User
from app.golfpoi.modules.categories.models import Category
from app.golfpoi.modules.courses.models import Course
from app.golfpoi.weather import WeatherClient, WeatherReport, parse_report, weather_client_from_config

SAMPLE = {
    "weather": [{"main": "Clouds", "description": "broken clouds"}],
    "wind": {"speed": 7.2, "deg": 250},
    "visibility": 10000,
    "main": {"humidity": 82, "temp": 285.1},
}


class _FakeResponse(io.BytesIO):
    status = 200

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


def test_parse_report_maps_provider_fields():
    report = parse_report(SAMPLE)
    assert report == WeatherReport(
        clouds="broken clouds",
        wind_speed=7.2,
        wind_direction=250,
        visibility_km=10.0,
        humidity=82,
    )


def test_fetch_builds_request_and_parses(monkeypatch):
    seen = {}

    def fake_urlopen(req, timeout):
        seen["url"] = req.full_url
        seen["timeout"] = timeout
        return _FakeResponse(json.dumps(SAMPLE).encode("utf-8"))

    monkeypatch.setattr("app.golfpoi.weather.urllib.request.urlopen", fake_urlopen)
    client = WeatherClient(api_key="k3y", base_url="https://weather.test/data/2.5", timeout_seconds=3)
    report = client.fetch(-6.26, 53.35)

    assert report.clouds == "broken clouds"
    assert seen["url"].startswith("https://weather.test/data/2.5/weather?")
    assert "lat=53.35" in seen["url"] and "lon=-6.26" in seen["url"] and "appid=k3y" in seen["url"]
    assert seen["timeout"] == 3


@pytest.mark.parametrize(
    "error",
    [
        urllib.error.HTTPError("https://weather.test", 401, "Unauthorized", hdrs=None, fp=None),
        urllib.error.URLError("connection refused"),
        TimeoutError("timed out"),
        http.client.RemoteDisconnected("Remote end closed connection"),
    ],
)
def test_fetch_absorbs_provider_failures(monkeypatch, caplog, error):
    def fake_urlopen(req, timeout):
        raise error

    monkeypatch.setattr("app.golfpoi.weather.urllib.request.urlopen", fake_urlopen)
    with caplog.at_level("WARNING", logger="app.golfpoi.weather"):
        assert WeatherClient(api_key="k").fetch(1.0, 2.0) is None
    assert "Could not find weather" in caplog.text


def test_fetch_absorbs_malformed_payloads(monkeypatch):
    monkeypatch.setattr(
        "app.golfpoi.weather.urllib.request.urlopen",
        lambda req, timeout: _FakeResponse(b"<html>oops</html>"),
    )
    assert WeatherClient(api_key="k").fetch(1.0, 2.0) is None

    monkeypatch.setattr(
        "app.golfpoi.weather.urllib.request.urlopen",
        lambda req, timeout: _FakeResponse(json.dumps({"weather": "sunny"}).encode()),
    )
    assert WeatherClient(api_key="k").fetch(1.0, 2.0).clouds is None

    monkeypatch.setattr(
        "app.golfpoi.weather.urllib.request.urlopen",
        lambda req, timeout: _FakeResponse(json.dumps({"weather": {"description": "x"}}).encode()),
    )
    assert WeatherClient(api_key="k").fetch(1.0, 2.0).clouds is None

    monkeypatch.setattr(
        "app.golfpoi.weather.urllib.request.urlopen",
        lambda req, timeout: _FakeResponse(json.dumps({"weather": ["sunny"]}).encode()),
    )
    assert WeatherClient(api_key="k").fetch(1.0, 2.0) is None


class _TruncatedResponse(_FakeResponse):
    def read(self, *args):
        raise http.client.IncompleteRead(b"{\"weather\"", 120)


def test_fetch_absorbs_truncated_body(monkeypatch):
    monkeypatch.setattr("app.golfpoi.weather.urllib.request.urlopen", lambda req, timeout: _TruncatedResponse())
    assert WeatherClient(api_key="k").fetch(1.0, 2.0) is None


def test_fetch_absorbs_misconfigured_base_url(caplog):
    client = WeatherClient(api_key="k", base_url="api.openweathermap.org/data/2.5")
    with caplog.at_level("WARNING", logger="app.golfpoi.weather"):
        assert client.fetch(1.0, 2.0) is None
    assert "Bad weather provider URL" in caplog.text


def test_client_from_config():
    assert weather_client_from_config({}) is None
    assert weather_client_from_config({"WEATHER_API_KEY": "  "}) is None
    client = weather_client_from_config({"WEATHER_API_KEY": "abc", "WEATHER_TIMEOUT_SECONDS": 4})
    assert client.api_key == "abc"
    assert client.timeout_seconds == 4
    assert client.base_url == "https://api.openweathermap.org/data/2.5"


class _StubWeather:
    def __init__(self, report):
        self.report = report
        self.calls = []

    def fetch(self, longitude, latitude):
        self.calls.append((longitude, latitude))
        return self.report


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("WEATHER_API_KEY", "from-env")

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    with session_scope(app) as s:
        s.add_all(
            [
                User(id=1, email="user@example.com", password_hash=generate_password_hash("pw")),
                Category(id=1, province="Leinster", valid_counties=["Dublin"]),
                Course(id=1, name="Portmarnock", description="Links", category_id=1, longitude=-6.12, latitude=53.42),
                Course(id=2, name="Indoor Range", description="No sky", category_id=1),
            ]
        )

    c = app.test_client()
    c.post("/auth/login", data={"email": "user@example.com", "password": "pw"})
    return c


def test_app_builds_weather_client_from_config(client):
    weather = client.application.extensions["weather_client"]
    assert isinstance(weather, WeatherClient)
    assert weather.api_key == "from-env"


def test_detail_shows_weather_for_located_course(client):
    stub = _StubWeather(parse_report(SAMPLE))
    client.application.extensions["weather_client"] = stub

    r = client.get("/courses/1")
    assert r.status_code == 200
    assert r.json["weather"]["visibility_km"] == 10.0
    assert stub.calls == [(-6.12, 53.42)]

    r = client.get("/courses/2")
    assert r.json["weather"] is None
    assert stub.calls == [(-6.12, 53.42)]


def test_detail_renders_when_weather_is_unavailable(client):
    client.application.extensions["weather_client"] = _StubWeather(None)
    r = client.get("/courses/1")
    assert r.status_code == 200
    assert r.json["weather"] is None
    assert r.json["name"] == "Portmarnock"
