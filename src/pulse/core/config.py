from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DEFAULT_MODE = "limited"
DEFAULT_SESSION_TIMEOUT_S = 1800

DEFAULT_ENDPOINTS = {
    "data-ws-anon": "/pulse/anon",
    "data-ws-session-start": "/pulse/session_start",
    "data-ws-pageview": "/pulse/page_view",
    "data-ws-lead": "/pulse/lead",
}


@dataclass(frozen=True)
class EndpointsConfig:
    first_seen: str = DEFAULT_ENDPOINTS["data-ws-anon"]
    session_start: str = DEFAULT_ENDPOINTS["data-ws-session-start"]
    page_view: str = DEFAULT_ENDPOINTS["data-ws-pageview"]
    lead: str = DEFAULT_ENDPOINTS["data-ws-lead"]


@dataclass(frozen=True)
class PulseConfig:
    """
    The script-level configuration surface, read once from the hosting element.
    An empty `base` disables all transmission.
    """

    site: str
    mode: str = DEFAULT_MODE
    base: str = ""
    endpoints: EndpointsConfig = EndpointsConfig()
    session_timeout_s: int = DEFAULT_SESSION_TIMEOUT_S

    def url_for(self, endpoint: str) -> str:
        return f"{self.base}{endpoint}"


@dataclass(frozen=True)
class StorageConfig:
    duckdb_path: str
    clean_slate: bool = False


@dataclass(frozen=True)
class TransportConfig:
    timeout_seconds: float = 5.0
    beacon_quota_bytes: int = 64 * 1024


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    debug: bool = False


@dataclass(frozen=True)
class PageLoadConfig:
    url: str
    after_seconds: float = 0.0
    title: str = ""
    referrer: str = ""
    submit: dict[str, Any] | None = None


@dataclass(frozen=True)
class VisitConfig:
    # "flag": PulseConsent already true at load; "signal": pulse:consent after load; "none"
    consent: str = "flag"
    user_agent: str = ""
    pages: tuple[PageLoadConfig, ...] = ()


@dataclass(frozen=True)
class AppConfig:
    attributes: dict[str, str]
    storage: StorageConfig
    transport: TransportConfig
    logging: LoggingConfig
    visit: VisitConfig = VisitConfig()
    raw: dict[str, Any] = field(default_factory=dict)


def _trim_slash(s: str) -> str:
    return s.rstrip("/") if s else s


def parse_session_timeout(value: Any, default: int = DEFAULT_SESSION_TIMEOUT_S) -> int:
    """
    Positive integer seconds, or `default` (with a warning) for anything else.
    """
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        parsed = None
    elif isinstance(value, int):
        parsed = value
    elif isinstance(value, float) and value.is_integer():
        parsed = int(value)
    else:
        try:
            parsed = int(str(value).strip())
        except ValueError:
            parsed = None

    if parsed is None or parsed <= 0:
        logger.warning(
            "invalid session timeout %r, using default %ss", value, default, extra={"key": "data-session-timeout"}
        )
        return default
    return parsed


def parse_attributes(attrs: Mapping[str, Any] | None, *, hostname: str) -> PulseConfig:
    """
    Build a PulseConfig from `data-*` attributes. All keys are optional.
    """
    attrs = attrs or {}

    def attr(name: str) -> str:
        v = attrs.get(name)
        return "" if v is None else str(v)

    base = _trim_slash(attr("data-base"))
    if not base:
        logger.warning("missing data-base attribute, transmission disabled", extra={"key": "data-base"})

    endpoints = EndpointsConfig(
        first_seen=attr("data-ws-anon") or DEFAULT_ENDPOINTS["data-ws-anon"],
        session_start=attr("data-ws-session-start") or DEFAULT_ENDPOINTS["data-ws-session-start"],
        page_view=attr("data-ws-pageview") or DEFAULT_ENDPOINTS["data-ws-pageview"],
        lead=attr("data-ws-lead") or DEFAULT_ENDPOINTS["data-ws-lead"],
    )

    return PulseConfig(
        site=attr("data-site") or hostname,
        mode=(attr("data-mode") or DEFAULT_MODE).lower(),
        base=base,
        endpoints=endpoints,
        session_timeout_s=parse_session_timeout(attrs.get("data-session-timeout")),
    )


def load_yaml(path: str | Path) -> dict[str, Any]:
    p = Path(path)
    data = yaml.safe_load(p.read_text())
    if not isinstance(data, dict):
        raise ValueError("Config YAML must parse to a dict at the top level.")
    return data


def _parse_visit(v_raw: dict[str, Any]) -> VisitConfig:
    consent = str(v_raw.get("consent", "flag")).lower()
    if consent not in {"flag", "signal", "none"}:
        raise ValueError(f"Unsupported visit.consent: {consent!r}")

    pages = []
    for p in v_raw.get("pages") or []:
        if "url" not in p:
            raise ValueError("Each visit page needs a 'url'.")
        pages.append(
            PageLoadConfig(
                url=str(p["url"]),
                after_seconds=float(p.get("after_seconds", 0.0)),
                title=str(p.get("title", "")),
                referrer=str(p.get("referrer", "")),
                submit=dict(p["submit"]) if p.get("submit") else None,
            )
        )
    return VisitConfig(consent=consent, user_agent=str(v_raw.get("user_agent", "")), pages=tuple(pages))


def parse_config(data: dict[str, Any]) -> AppConfig:
    for key in ["pulse", "storage", "logging"]:
        if key not in data:
            raise ValueError(f"Missing required top-level config section: '{key}'")

    attributes = {str(k): "" if v is None else str(v) for k, v in (data.get("pulse") or {}).items()}
    storage = data.get("storage") or {}
    transport = data.get("transport") or {}
    logging_cfg = data.get("logging") or {}

    storage_cfg = StorageConfig(
        duckdb_path=str(storage["duckdb_path"]),
        clean_slate=bool(storage.get("clean_slate", False)),
    )
    transport_cfg = TransportConfig(
        timeout_seconds=float(transport.get("timeout_seconds", 5.0)),
        beacon_quota_bytes=int(transport.get("beacon_quota_bytes", 64 * 1024)),
    )
    log_cfg = LoggingConfig(
        level=str(logging_cfg.get("level", "INFO")).upper(),
        debug=bool(logging_cfg.get("debug", False)),
    )

    return AppConfig(
        attributes=attributes,
        storage=storage_cfg,
        transport=transport_cfg,
        logging=log_cfg,
        visit=_parse_visit(data.get("visit") or {}),
        raw=data,
    )


def load_config(path: str | Path) -> AppConfig:
    data = load_yaml(path)
    return parse_config(data)
