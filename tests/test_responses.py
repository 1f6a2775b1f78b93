from __future__ import annotations

import pytest
from starlette.requests import Request

from casa.responses import wants_json


def _request(query: str = "", accept: str | None = None) -> Request:
    headers = []
    if accept is not None:
        headers.append((b"accept", accept.encode("latin-1")))
    return Request({"type": "http", "method": "GET", "path": "/", "query_string": query.encode(), "headers": headers})


@pytest.mark.parametrize(
    ("query", "accept", "expected"),
    [
        ("", None, False),
        ("format=json", None, True),
        ("format=JSON", "text/html", True),
        ("", "application/json", True),
        ("", "text/html,application/json", False),
        ("", "application/json;q=0.9, text/html", True),
        ("", "*/*", False),
    ],
)
def test_wants_json(query, accept, expected) -> None:
    assert wants_json(_request(query, accept)) is expected
