"""Tests for the route error-handling decorator."""

import json

import pytest
from fastapi import HTTPException

from repo_embeddings.utils.error_handler import INTERNAL_ERROR_BODY, handle_api_errors


@pytest.mark.asyncio
async def test_result_passes_through():
    @handle_api_errors
    async def route(value):
        return {"value": value}

    assert await route(3) == {"value": 3}
    assert route.__name__ == "route"


@pytest.mark.asyncio
async def test_http_exception_is_reraised():
    @handle_api_errors
    async def route():
        raise HTTPException(status_code=404, detail={"error": "missing"})

    with pytest.raises(HTTPException) as exc_info:
        await route()

    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_unexpected_error_becomes_generic_500(caplog):
    @handle_api_errors
    async def route():
        raise RuntimeError("token=abc leaked")

    response = await route()

    assert response.status_code == 500
    assert json.loads(response.body) == INTERNAL_ERROR_BODY
    assert "token=abc" not in response.body.decode()
    assert "Unhandled error in route" in caplog.text
