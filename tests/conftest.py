"""공용 pytest 픽스처"""
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.core.state import ConversationRecord, TurnState
from tests.helpers import FakeTurnContext, make_activity


@pytest.fixture
def fake_adapter():
    adapter = MagicMock()
    adapter.get_user_token = AsyncMock(return_value=None)
    adapter.exchange_token = AsyncMock(return_value=None)
    adapter.get_oauth_sign_in_link = AsyncMock(return_value="https://signin.example.test/link")
    adapter.sign_out_user = AsyncMock(return_value=None)
    return adapter


@pytest.fixture
def context_factory():
    def factory(text: Optional[str] = None, **kwargs) -> FakeTurnContext:
        adapter = kwargs.pop("adapter", None)
        return FakeTurnContext(make_activity(text, **kwargs), adapter=adapter)

    return factory


@pytest.fixture
def turn_state() -> TurnState:
    return TurnState("conv-1", ConversationRecord())
