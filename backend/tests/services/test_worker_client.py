import asyncio
from datetime import datetime, timezone

import pytest
from unittest.mock import MagicMock, AsyncMock, patch

from leadmap.modules.scraping.services.worker_client import ScrapingWorkerClient
from leadmap.shared.utils.exceptions import WorkerDispatchError

HTTP_CLIENT = "leadmap.modules.scraping.services.worker_client.http_client_manager.get_client"


def worker_response(status_code, body=None):
    response = MagicMock()
    response.status_code = status_code
    response.text = str(body)
    if body is None:
        response.json.side_effect = ValueError("no body")
    else:
        response.json.return_value = body
    return response


def test_build_payload_uses_worker_field_names(session_row):
    now = datetime(2026, 3, 2, 10, 0, 0, tzinfo=timezone.utc)
    payload = ScrapingWorkerClient.build_payload(
        session_row(limit_results=25, new_file=True, file_name="Plombiers Lyon"), now=now
    )

    assert payload["session_id"] == "sess-1"
    assert payload["lien_google_maps"].startswith("https://www.google.com/maps")
    assert payload["secteur_activite"] == "plombier"
    assert payload["limit_resultats"] == 25
    assert payload["nouveau_fichier"] is True
    assert payload["nom_fichier"] == "Plombiers Lyon"
    assert payload["timestamp"] == "2026-03-02T10:00:00+00:00"


def test_secret_is_sent_as_header():
    client = ScrapingWorkerClient(webhook_url="https://worker.test/hook", secret="s3cret")
    assert client._get_headers()["X-Webhook-Secret"] == "s3cret"
    assert "X-Webhook-Secret" not in ScrapingWorkerClient("https://worker.test/hook", secret="")._get_headers()


def test_dispatch_returns_worker_answer(session_row):
    async def test_logic():
        http = MagicMock()
        http.post = AsyncMock(return_value=worker_response(200, {"message": "Workflow was started"}))
        client = ScrapingWorkerClient(webhook_url="https://worker.test/hook", secret="")

        with patch(HTTP_CLIENT, return_value=http):
            answer = await client.dispatch(session_row())

        assert answer == {"message": "Workflow was started"}
        args, kwargs = http.post.call_args
        assert args[0] == "https://worker.test/hook"
        assert kwargs["json"]["session_id"] == "sess-1"

    asyncio.run(test_logic())


def test_dispatch_without_json_body_returns_empty_dict(session_row):
    async def test_logic():
        http = MagicMock()
        http.post = AsyncMock(return_value=worker_response(200))
        client = ScrapingWorkerClient(webhook_url="https://worker.test/hook", secret="")

        with patch(HTTP_CLIENT, return_value=http):
            assert await client.dispatch(session_row()) == {}

    asyncio.run(test_logic())


def test_client_error_is_not_retried(session_row):
    async def test_logic():
        http = MagicMock()
        http.post = AsyncMock(return_value=worker_response(400, {"error": "bad job"}))
        client = ScrapingWorkerClient(webhook_url="https://worker.test/hook", secret="")

        with patch(HTTP_CLIENT, return_value=http):
            with pytest.raises(WorkerDispatchError) as exc_info:
                await client.dispatch(session_row())

        assert exc_info.value.status_code == 400
        assert http.post.await_count == 1

    asyncio.run(test_logic())


def test_unconfigured_worker_refuses_dispatch(session_row):
    async def test_logic():
        client = ScrapingWorkerClient(webhook_url="", secret="")

        assert client.is_configured() is False
        with pytest.raises(WorkerDispatchError):
            await client.dispatch(session_row())

    asyncio.run(test_logic())
