"""Functions that download data from the LuaRocks registry."""
from __future__ import annotations

import logging
from typing import Dict, Optional

import requests

from .exceptions import ClientError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30
USER_AGENT = "rockflow/0.1"


def _get(url: str, session: Optional[requests.Session] = None) -> requests.Response:
    sess = session or requests.Session()
    headers = {"User-Agent": USER_AGENT}
    logger.debug("GET %s", url)
    try:
        response = sess.get(url, headers=headers, timeout=DEFAULT_TIMEOUT)
    except requests.RequestException as exc:
        raise ClientError(f"Failed to fetch {url}: {exc}") from exc
    if response.status_code >= 400:
        raise ClientError(f"Failed to fetch {url}: HTTP {response.status_code}")
    return response


def fetch_manifest_json(manifest_url: str, session: Optional[requests.Session] = None) -> Dict:
    url = f"{manifest_url}?format=json"
    response = _get(url, session=session)
    try:
        payload = response.json()
    except ValueError as exc:
        raise ClientError(f"Invalid JSON from {url}") from exc
    if not isinstance(payload, dict):
        raise ClientError(f"Unexpected manifest payload from {url}")
    return payload


def fetch_text(url: str, session: Optional[requests.Session] = None) -> str:
    return _get(url, session=session).text


def fetch_bytes(url: str, session: Optional[requests.Session] = None) -> bytes:
    return _get(url, session=session).content
