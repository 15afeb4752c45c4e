import asyncio

import httpx
import pytest
from unittest.mock import MagicMock, AsyncMock, patch

from leadmap.modules.scraping.constants import EmailStatus
from leadmap.modules.scraping.services.email_verification import heuristic_status, verify_email_address

HTTP_CLIENT = "leadmap.modules.scraping.services.email_verification.http_client_manager.get_client"


def zerobounce(status_code=200, body=None):
    response = MagicMock()
    response.status_code = status_code
    response.text = ""
    response.json.return_value = body or {}
    http = MagicMock()
    http.get = AsyncMock(return_value=response)
    return http


@pytest.mark.parametrize("email,expected", [
    ("contact@plomberie.fr", EmailStatus.VALID),
    ("test@plomberie.fr", EmailStatus.RISKY),
    ("error@plomberie.fr", EmailStatus.INVALID),
])
def test_heuristic_status(email, expected):
    assert heuristic_status(email) == expected


def test_missing_address_is_invalid():
    assert asyncio.run(verify_email_address(None, api_key="")) == EmailStatus.INVALID
    assert asyncio.run(verify_email_address("aucun_mail", api_key="")) == EmailStatus.INVALID


def test_no_api_key_uses_heuristic():
    assert asyncio.run(verify_email_address("contact@plomberie.fr", api_key="")) == EmailStatus.VALID


@pytest.mark.parametrize("zb_status,expected", [
    ("valid", EmailStatus.VALID),
    ("do_not_mail", EmailStatus.INVALID),
    ("catch-all", EmailStatus.RISKY),
    ("something_new", EmailStatus.RISKY),
])
def test_zerobounce_statuses_are_mapped(zb_status, expected):
    async def test_logic():
        http = zerobounce(body={"status": zb_status})
        with patch(HTTP_CLIENT, return_value=http):
            status = await verify_email_address("contact@plomberie.fr", api_key="zb-key")

        assert status == expected
        assert http.get.call_args.kwargs["params"]["email"] == "contact@plomberie.fr"

    asyncio.run(test_logic())


def test_api_failures_are_reported_as_risky():
    async def test_logic():
        with patch(HTTP_CLIENT, return_value=zerobounce(status_code=500)):
            assert await verify_email_address("a@b.fr", api_key="zb-key") == EmailStatus.RISKY

        http = MagicMock()
        http.get = AsyncMock(side_effect=httpx.ConnectError("down"))
        with patch(HTTP_CLIENT, return_value=http):
            assert await verify_email_address("a@b.fr", api_key="zb-key") == EmailStatus.RISKY

    asyncio.run(test_logic())
