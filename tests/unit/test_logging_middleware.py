from starlette.requests import Request

from noteclub.http_api.logging_middleware import loggable_query


def make_request(query: bytes) -> Request:
    return Request({"type": "http", "method": "GET", "path": "/api/v1/albums", "query_string": query, "headers": []})


def test_token_is_redacted():
    assert loggable_query(make_request(b"token=secret&page=2")) == "?token=***&page=2"


def test_empty_query():
    assert loggable_query(make_request(b"")) == ""
