"""Tests for the agent-assist API."""

from unittest.mock import AsyncMock

from fastapi.testclient import TestClient

from app.exceptions import GenerationError
from app.main import create_app
from conftest import build_test_state


def test_suggestion_returned(settings):
    state = build_test_state(settings)
    state.suggestions.suggest = AsyncMock(return_value="내일 오전 예약 가능합니다.")
    with TestClient(create_app(testing=True, state=state)) as client:
        resp = client.post(
            "/assist/suggestions",
            json={
                "tenant_id": "tenant-1",
                "query": "내일 예약 되나요?",
                "history": [{"role": "user", "content": "안녕하세요"}],
            },
        )
    assert resp.status_code == 200
    assert resp.json() == {"data": {"suggestion": "내일 오전 예약 가능합니다."}}
    tenant_id, query, history = state.suggestions.suggest.await_args.args
    assert (tenant_id, query) == ("tenant-1", "내일 예약 되나요?")
    assert history[0].content == "안녕하세요"


def test_generation_failure_is_502(settings):
    state = build_test_state(settings)
    state.suggestions.suggest = AsyncMock(side_effect=GenerationError("timeout"))
    with TestClient(create_app(testing=True, state=state)) as client:
        resp = client.post("/assist/suggestions", json={"tenant_id": "t", "query": "q"})
    assert resp.status_code == 502


def test_empty_query_is_422(settings):
    with TestClient(create_app(testing=True, state=build_test_state(settings))) as client:
        resp = client.post("/assist/suggestions", json={"tenant_id": "t", "query": ""})
    assert resp.status_code == 422
