"""Adaptive Card 빌더

카드 payload만 구성하며 렌더링은 채널이 담당
"""
from typing import Optional

from botbuilder.schema import Attachment

ADAPTIVE_CARD_CONTENT_TYPE = "application/vnd.microsoft.card.adaptive"
ADAPTIVE_CARD_SCHEMA = "http://adaptivecards.io/schemas/adaptive-card.json"


def build_agent_answer_card(
    answer: str,
    agent_name: Optional[str] = None,
    model_name: Optional[str] = None,
) -> dict:
    """
    에이전트 응답용 Adaptive Card 생성

    Args:
        answer: 에이전트 응답 텍스트 (markdown)
        agent_name: 표시할 에이전트 이름
        model_name: 모델 이름 (footer)

    Returns:
        Adaptive Card JSON
    """
    body: list[dict] = [
        {
            "type": "TextBlock",
            "text": agent_name or "AI Agent",
            "weight": "Bolder",
            "size": "Medium",
        },
        {
            "type": "TextBlock",
            "text": answer,
            "wrap": True,
        },
    ]

    if model_name:
        body.append({
            "type": "TextBlock",
            "text": f"Model: {model_name}",
            "size": "Small",
            "isSubtle": True,
            "spacing": "Medium",
        })

    return {
        "type": "AdaptiveCard",
        "version": "1.4",
        "$schema": ADAPTIVE_CARD_SCHEMA,
        "body": body,
    }


def build_sign_in_card(sign_in_link: str, connection_name: str) -> dict:
    """OAuth 로그인 링크 카드"""
    return {
        "type": "AdaptiveCard",
        "version": "1.4",
        "$schema": ADAPTIVE_CARD_SCHEMA,
        "body": [
            {
                "type": "TextBlock",
                "text": f"Sign in to {connection_name}",
                "weight": "Bolder",
            },
            {
                "type": "TextBlock",
                "text": "After signing in, send `/signin <code>` with the code you receive.",
                "wrap": True,
            },
        ],
        "actions": [
            {
                "type": "Action.OpenUrl",
                "title": "Sign in",
                "url": sign_in_link,
            }
        ],
    }


def card_attachment(card: dict) -> Attachment:
    """Adaptive Card → Bot Framework Attachment"""
    return Attachment(
        content_type=ADAPTIVE_CARD_CONTENT_TYPE,
        content=card,
    )
