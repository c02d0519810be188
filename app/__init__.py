"""Agent Bot - Bot Framework 대화 봇 엔드포인트"""

__version__ = "0.1.0"
