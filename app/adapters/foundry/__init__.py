"""Azure AI Foundry 에이전트 어댑터"""
from app.adapters.foundry.backend import AgentRequest, AgentRunBackend, map_run_status
from app.adapters.foundry.client import FoundryAgentsClient

__all__ = ["AgentRequest", "AgentRunBackend", "FoundryAgentsClient", "map_run_status"]
