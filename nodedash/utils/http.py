"""Outbound HTTP helpers with a total deadline."""
from __future__ import annotations

import time

import requests


class DeadlineExceeded(requests.exceptions.Timeout):
    """The response did not complete within the total deadline."""


def read_within_deadline(response, deadline: float, limit: int) -> bytes:
    """Read at most ``limit`` bytes of a streamed ``response`` before ``deadline``.

    ``deadline`` is a ``time.monotonic()`` value; the requests ``timeout``
    only bounds each socket read.
    """
    body = bytearray()
    for chunk in response.iter_content(chunk_size=1):
        if time.monotonic() >= deadline:
            raise DeadlineExceeded('Response exceeded the request deadline')
        body.extend(chunk)
        if len(body) >= limit:
            break
    return bytes(body)
