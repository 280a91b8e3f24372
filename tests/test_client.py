import asyncio
from unittest.mock import AsyncMock, call

import aiohttp
import pytest

import salien_bot
from salien_bot import DEFAULT_HEADERS, ErrorKind, OperationError
from tests.conftest import FakeResponse


def test_build_url_joins_params_without_trailing_separator(make_client) -> None:
    client = make_client([])

    assert client.build_url("X", ["id=5", "language=english"]) == (
        "https://api.example.com/X/v0001/?id=5&language=english"
    )
    assert client.build_url("X", []) == "https://api.example.com/X/v0001"


@pytest.mark.asyncio
async def test_request_succeeds_on_last_allowed_attempt(make_client) -> None:
    client = make_client([
        aiohttp.ClientConnectionError("boom"),
        asyncio.TimeoutError(),
        {"response": {"ok": 1}},
    ])

    result = await client.request("Svc/Call", ["a=1"], max_retries=3)

    assert result == {"ok": 1}
    assert len(client.session.calls) == 3


@pytest.mark.asyncio
async def test_request_raises_after_exhausting_attempts(make_client) -> None:
    client = make_client([aiohttp.ClientConnectionError("down")] * 3)

    with pytest.raises(OperationError) as excinfo:
        await client.request("Svc/Call", None, max_retries=3)

    assert excinfo.value.kind is ErrorKind.OPERATION
    assert excinfo.value.method == "Svc/Call"
    assert excinfo.value.attempts == 3
    assert len(client.session.calls) == 3


@pytest.mark.asyncio
async def test_non_json_body_counts_as_transport_failure(make_client) -> None:
    client = make_client([FakeResponse(text="<html>busy</html>"), {"response": {"planets": []}}])

    result = await client.request("Svc/Call", None, max_retries=2)

    assert result == {"planets": []}
    assert len(client.session.calls) == 2


@pytest.mark.asyncio
async def test_request_returns_response_field_without_status_checks(make_client) -> None:
    client = make_client([FakeResponse({"response": {}}, status=500), {"no_envelope": True}])

    assert await client.request("Svc/A", None, max_retries=1) == {}
    assert await client.request("Svc/B", None, max_retries=1) is None


@pytest.mark.asyncio
async def test_request_sends_browser_headers_and_merges_overrides(make_client) -> None:
    client = make_client([{"response": {}}])

    await client.request("Svc/Call", None, max_retries=1, http_method="POST", headers={"X-Extra": "1"})

    call = client.session.calls[0]
    assert call["method"] == "POST"
    for key, value in DEFAULT_HEADERS.items():
        assert call["headers"][key] == value
    assert call["headers"]["X-Extra"] == "1"


@pytest.mark.asyncio
async def test_request_rejects_zero_retry_ceiling(make_client) -> None:
    client = make_client([])

    with pytest.raises(ValueError):
        await client.request("Svc/Call", None, max_retries=0)


@pytest.mark.asyncio
async def test_endpoint_wrappers_use_expected_verbs_and_params(make_client) -> None:
    client = make_client([
        {"response": {"planets": [{"id": "1"}]}},
        {"response": {"planets": [{"id": "5", "zones": []}]}},
        {"response": {"active_planet": "5"}},
        {"response": {}},
        {"response": {}},
        {"response": {}},
    ])

    assert await client.get_planets() == [{"id": "1"}]
    assert await client.get_planet("5") == {"id": "5", "zones": []}
    assert await client.get_player_info() == {"active_planet": "5"}
    await client.represent_clan("42")
    await client.leave_game("g1")
    await client.join_planet("5")

    calls = [(c["method"], c["url"].replace("https://api.example.com/", "")) for c in client.session.calls]
    assert calls == [
        ("GET", "ITerritoryControlMinigameService/GetPlanets/v0001/?active_only=1"),
        ("GET", "ITerritoryControlMinigameService/GetPlanet/v0001/?id=5&language=english"),
        ("POST", "ITerritoryControlMinigameService/GetPlayerInfo/v0001/?access_token=tok"),
        ("POST", "ITerritoryControlMinigameService/RepresentClan/v0001/?access_token=tok&clanid=42"),
        ("POST", "IMiniGameService/LeaveGame/v0001/?access_token=tok&gameid=g1"),
        ("POST", "ITerritoryControlMinigameService/JoinPlanet/v0001/?access_token=tok&id=5"),
    ]


@pytest.mark.asyncio
async def test_get_planet_tolerates_empty_payloads(make_client) -> None:
    client = make_client([{"response": {}}, {"response": {"planets": []}}])

    assert await client.get_planet("1") is None
    assert await client.get_planet("1") is None


@pytest.mark.asyncio
async def test_leave_current_game_represents_clan_and_leaves_active_game(make_client) -> None:
    client = make_client([
        {"response": {"active_zone_game": "77"}},
        {"response": {}},
        {"response": {}},
    ])

    info = await client.leave_current_game(clan="42")

    assert info == {"active_zone_game": "77"}
    urls = [c["url"] for c in client.session.calls]
    assert "GetPlayerInfo" in urls[0]
    assert "RepresentClan" in urls[1] and "clanid=42" in urls[1]
    assert "LeaveGame" in urls[2] and "gameid=77" in urls[2]


@pytest.mark.asyncio
async def test_leave_current_game_without_clan_or_active_game(make_client) -> None:
    client = make_client([{"response": {}}])

    await client.leave_current_game()

    assert len(client.session.calls) == 1


@pytest.mark.asyncio
async def test_leave_current_game_wraps_leave_failure(make_client) -> None:
    client = make_client(
        [{"response": {"active_zone_game": "77"}}] + [aiohttp.ClientConnectionError("x")] * 2,
    )

    with pytest.raises(OperationError, match="Could not leave game 77"):
        await client.leave_current_game()


@pytest.mark.asyncio
async def test_retries_wait_a_constant_delay_between_attempts(
    make_client, monkeypatch: pytest.MonkeyPatch,
) -> None:
    sleep = AsyncMock()
    monkeypatch.setattr(salien_bot.asyncio, "sleep", sleep)
    client = make_client([aiohttp.ClientConnectionError("down")] * 4, retry_delay=5.0)

    with pytest.raises(OperationError):
        await client.request("Svc/Call", None, max_retries=4)

    assert sleep.await_args_list == [call(5.0)] * 3


def test_default_retry_delay_is_five_seconds() -> None:
    assert salien_bot.RETRY_DELAY == 5.0


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", ["Rate limited", ["x"], {"planets": "none"}, None])
async def test_planet_wrappers_treat_error_shaped_payloads_as_missing(make_client, payload) -> None:
    client = make_client([{"response": payload}, {"response": payload}])

    assert await client.get_planets() is None
    assert await client.get_planet("1") is None


@pytest.mark.asyncio
async def test_get_planet_ignores_non_dict_entry(make_client) -> None:
    client = make_client([{"response": {"planets": ["oops"]}}])

    assert await client.get_planet("1") is None


@pytest.mark.asyncio
async def test_leave_current_game_tolerates_error_shaped_player_info(make_client) -> None:
    client = make_client([{"response": "Rate limited"}])

    assert await client.leave_current_game() == {}
    assert len(client.session.calls) == 1
