from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType

DEFAULT_REQUEST_HEADERS: Mapping[str, str] = MappingProxyType(
    {
        "Accept": "application/json, text/plain, */*",
        "Content-Type": "application/json",
        "Accept-Encoding": "gzip, deflate",
        "Accept-Language": "en-US,en;q=0.9",
    }
)


def merge_request_headers(
    headers: Mapping[str, str] | None,
    defaults: Mapping[str, str] = DEFAULT_REQUEST_HEADERS,
) -> dict[str, str]:
    """Return ``defaults`` overlaid with caller ``headers``.

    Header names compare case-insensitively; on a conflict the caller's
    name and value win.
    """
    caller = dict(headers or {})
    overridden = {name.lower() for name in caller}
    merged = {
        name: value
        for name, value in defaults.items()
        if name.lower() not in overridden
    }
    merged.update(caller)
    return merged
