"""TLS helpers for the Celery Redis broker/backend."""
from __future__ import annotations

import ssl
from typing import Any
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

import certifi

from notifier.core.config import settings

_CERT_REQS = {
    "none": ssl.CERT_NONE,
    "optional": ssl.CERT_OPTIONAL,
    "required": ssl.CERT_REQUIRED,
}


def _add_query_param(url: str, key: str, value: str | None) -> str:
    parsed = urlparse(url)
    query = parse_qs(parsed.query, keep_blank_values=True)
    if value is None:
        query.pop(key, None)
    else:
        query[key] = [value]
    new_query = urlencode(query, doseq=True)
    return urlunparse(parsed._replace(query=new_query))


def get_ca_cert_path() -> str:
    """Return the configured CA bundle, falling back to certifi's."""
    return settings.REDIS_SSL_CA_CERTS or certifi.where()


def normalize_cert_reqs(value: str | None = None) -> str:
    candidate = (value or settings.REDIS_SSL_CERT_REQS or "required").lower()
    if candidate not in _CERT_REQS:
        candidate = "required"
    return candidate


def prepare_redis_url(url: str | None) -> str | None:
    """Append TLS query params to Redis URL when using rediss."""
    if not url:
        return url
    if url.startswith("rediss://"):
        url = _add_query_param(url, "ssl_cert_reqs", normalize_cert_reqs())
        url = _add_query_param(url, "ssl_ca_certs", get_ca_cert_path())
    return url


def get_ssl_options() -> dict[str, Any] | None:
    """Return ssl options dict for Celery when using TLS."""
    url = settings.REDIS_URL
    if not url or not url.startswith("rediss://"):
        return None
    return {
        "ssl_cert_reqs": _CERT_REQS[normalize_cert_reqs()],
        "ssl_ca_certs": get_ca_cert_path(),
    }
