from unittest.mock import AsyncMock

from botbuilder.schema import TokenResponse
import pytest

from app.teams.auth import TokenAuthorization
from tests.helpers import USER_ID, FakeTurnContext, make_activity


@pytest.fixture
def authorization() -> TokenAuthorization:
    return TokenAuthorization({"graph": "graph-connection"})


def test_unknown_capability_is_rejected(authorization) -> None:
    with pytest.raises(ValueError):
        authorization.connection_name("sharepoint")


async def test_get_token_returns_token_value(authorization, fake_adapter) -> None:
    fake_adapter.get_user_token = AsyncMock(return_value=TokenResponse(token="user-token"))
    context = FakeTurnContext(make_activity("/me"), adapter=fake_adapter)

    assert await authorization.get_token(context, "graph") == "user-token"
    fake_adapter.get_user_token.assert_awaited_once_with(context, "graph-connection", None)


async def test_get_token_failure_means_no_token(authorization, fake_adapter) -> None:
    fake_adapter.get_user_token = AsyncMock(side_effect=RuntimeError("token service down"))
    context = FakeTurnContext(make_activity("/me"), adapter=fake_adapter)

    assert await authorization.get_token(context, "graph") is None


async def test_empty_token_response_means_no_token(authorization, fake_adapter) -> None:
    fake_adapter.get_user_token = AsyncMock(return_value=TokenResponse(token=""))
    context = FakeTurnContext(make_activity("/me"), adapter=fake_adapter)

    assert await authorization.get_token(context, "graph") is None


async def test_exchange_token_joins_scopes(authorization, fake_adapter) -> None:
    fake_adapter.exchange_token = AsyncMock(return_value=TokenResponse(token="exchanged"))
    context = FakeTurnContext(make_activity("/me"), adapter=fake_adapter)

    token = await authorization.exchange_token(context, "graph", ["User.Read", "Mail.Read"])

    assert token == "exchanged"
    args = fake_adapter.exchange_token.await_args.args
    assert args[1] == "graph-connection"
    assert args[2] == USER_ID
    assert args[3].uri == "User.Read Mail.Read"


async def test_exchange_failure_returns_none(authorization, fake_adapter) -> None:
    fake_adapter.exchange_token = AsyncMock(side_effect=RuntimeError("exchange refused"))
    context = FakeTurnContext(make_activity("/me"), adapter=fake_adapter)

    assert await authorization.exchange_token(context, "graph", ["User.Read"]) is None


async def test_snapshot_reports_each_capability(authorization, fake_adapter) -> None:
    fake_adapter.get_user_token = AsyncMock(return_value=TokenResponse(token="user-token"))
    context = FakeTurnContext(make_activity("/me"), adapter=fake_adapter)

    snapshot = await authorization.snapshot(context, ["graph", "sharepoint"])

    assert snapshot == {"graph": True, "sharepoint": False}
    assert fake_adapter.get_user_token.await_count == 1


async def test_sign_in_link_uses_connection(authorization, fake_adapter) -> None:
    context = FakeTurnContext(make_activity("/signin"), adapter=fake_adapter)

    link = await authorization.get_sign_in_link(context, "graph")

    assert link == "https://signin.example.test/link"
    fake_adapter.get_oauth_sign_in_link.assert_awaited_once_with(context, "graph-connection")
