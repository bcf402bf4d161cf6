from __future__ import annotations

import re
from typing import Any
from urllib.parse import parse_qsl, urlsplit

from pulse.features.page.service import Page
from pulse.features.page.types import Form

UTM_KEYS = ("utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content")

# first match wins, in this order
CLICK_ID_PLATFORMS = {
    "gclid": "google_ads",
    "gbraid": "google_ads",
    "wbraid": "google_ads",
    "fbclid": "meta_ads",
    "ttclid": "tiktok_ads",
    "li_fat_id": "linkedin_ads",
    "msclkid": "microsoft_ads",
    "snap_clickid": "snap_ads",
    "ad_id": "generic",
}

# never forwarded inside form_data; they travel as top-level fields
FORM_STRIP_KEYS = ("anon_id", "session_id", *UTM_KEYS, "tid", "tid_p", "tidp")

_MOBILE_RE = re.compile(r"Mobi|Android", re.IGNORECASE)


def _query(url: str) -> dict[str, str]:
    # keep the first value per key, like URLSearchParams.get
    out: dict[str, str] = {}
    for k, v in parse_qsl(urlsplit(url).query, keep_blank_values=True):
        out.setdefault(k, v)
    return out


def classify_device(user_agent: str) -> str:
    return "mobile" if _MOBILE_RE.search(user_agent or "") else "desktop"


def extract_click_id(url: str) -> dict[str, str]:
    q = _query(url)
    for key, platform in CLICK_ID_PLATFORMS.items():
        if key in q:
            return {"tid": q[key], "tid_p": platform}
    return {}


def page_meta(page: Page) -> dict[str, Any]:
    parts = urlsplit(page.url)
    landing = parts.path or "/"
    if parts.query:
        landing += f"?{parts.query}"
    if parts.fragment:
        landing += f"#{parts.fragment}"

    q = _query(page.url)
    utm = {k: q[k] for k in UTM_KEYS if q.get(k)}

    return {
        "domain": page.hostname,
        "referrer": page.referrer or "",
        "title": page.title or "",
        "landing_page": landing,
        "viewport": f"{page.viewport[0]}x{page.viewport[1]}",
        "language": page.language or "",
        "device_type": classify_device(page.user_agent),
        "user_agent": page.user_agent or "",
        **utm,
    }


def page_enrichment(page: Page) -> dict[str, Any]:
    """Page metadata plus attribution ids for the current location."""
    return {**page_meta(page), **extract_click_id(page.url)}


def serialize_form(form: Form) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in form.entries():
        if k in out:
            if isinstance(out[k], list):
                out[k].append(v)
            else:
                out[k] = [out[k], v]
        else:
            out[k] = v

    for k in FORM_STRIP_KEYS:
        out.pop(k, None)

    form_type = form.get_attribute("data-form-type")
    if form_type and not out.get("type"):
        out["type"] = form_type
    return out
