"""
Custom-URL adapter — the OpenAI chat shape sent to a fully user-supplied endpoint.
"""

from __future__ import annotations

from .openai_adapter import OpenAIAdapter


class CustomAdapter(OpenAIAdapter):

    api_type = "custom"

    def build_url(self) -> str:
        return self.config.base_url
