"""테스트 헬퍼 (Activity 생성, TurnContext 대역)"""
from typing import Optional, Union
from unittest.mock import MagicMock

from botbuilder.schema import (
    Activity,
    ActivityTypes,
    ChannelAccount,
    ConversationAccount,
    ResourceResponse,
)

BOT_ID = "bot-1"
USER_ID = "user-1"


def make_activity(
    text: Optional[str] = None,
    activity_type: str = "message",
    conversation_id: Optional[str] = "conv-1",
    members_added: Optional[list[ChannelAccount]] = None,
) -> Activity:
    return Activity(
        type=activity_type,
        id="activity-1",
        text=text,
        channel_id="msteams",
        service_url="https://smba.example.test/",
        from_property=ChannelAccount(id=USER_ID, name="Test User"),
        recipient=ChannelAccount(id=BOT_ID, name="Agent Bot"),
        conversation=ConversationAccount(id=conversation_id) if conversation_id else None,
        members_added=members_added,
    )


class FakeTurnContext:
    """send_activity 호출을 기록하는 TurnContext 대역"""

    def __init__(self, activity: Activity, adapter=None):
        self.activity = activity
        self.adapter = adapter or MagicMock()
        self.sent: list[Union[str, Activity]] = []

    async def send_activity(self, activity_or_text):
        self.sent.append(activity_or_text)
        return ResourceResponse(id=str(len(self.sent)))

    @property
    def texts(self) -> list[str]:
        """보낸 텍스트 메시지 (typing / 카드 제외)"""
        result = []
        for item in self.sent:
            if isinstance(item, str):
                result.append(item)
            elif item.type == ActivityTypes.message and item.text:
                result.append(item.text)
        return result

    @property
    def attachments(self) -> list:
        result = []
        for item in self.sent:
            if isinstance(item, Activity) and item.attachments:
                result.extend(item.attachments)
        return result
