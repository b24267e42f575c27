"""Helpers to read status and headers off urllib responses.

`urlopen` returns an `http.client.HTTPResponse` on success and raises
`urllib.error.HTTPError` on non-2xx statuses. Both carry headers as an
`email.message.Message`; we flatten them to a plain dict.
"""

from __future__ import annotations

from typing import Any


def headers_to_dict(headers: Any) -> dict[str, str]:
    out: dict[str, str] = {}
    if headers is None:
        return out
    for k, v in headers.items():
        if k is None:
            continue
        out[str(k)] = str(v)
    return out


def status_of(response: Any) -> int:
    # HTTPError exposes `code`; HTTPResponse exposes `status`.
    status = getattr(response, "status", None)
    if status is None:
        status = getattr(response, "code", None)
    if status is None:
        status = response.getcode()
    return int(status)
