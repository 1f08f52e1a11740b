"""
Adapter Pool — round-robin selection and id lookup over configured backends.

The pool is rebuilt wholesale from a config list (hot reconfiguration);
disabled entries are discarded. The cursor is shared between concurrent
callers, so only eventual cyclic coverage is guaranteed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

import httpx

from .adapters.base import AdapterConfig, BaseAdapter, GenerationParameters, ProgressCallback
from .adapters.cloudflare import CloudflareAdapter
from .adapters.custom import CustomAdapter
from .adapters.gemini import GeminiAdapter
from .adapters.ollama import OllamaAdapter
from .adapters.openai_adapter import OpenAIAdapter
from .errors import ConfigError

logger = logging.getLogger(__name__)


def create_adapter(
    config: AdapterConfig,
    params: Optional[GenerationParameters] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> BaseAdapter:
    """Instantiate the adapter variant for `config.api_type`."""
    api_type = config.api_type.lower()
    if api_type == "openai":
        cls = OpenAIAdapter
    elif api_type == "custom":
        cls = CustomAdapter
    elif api_type == "cloudflare":
        cls = CloudflareAdapter
    elif api_type == "gemini":
        cls = GeminiAdapter
    elif api_type == "ollama":
        cls = OllamaAdapter
    else:
        raise ConfigError(
            f"Unknown adapter type: {config.api_type}. "
            f"Available: openai, custom, cloudflare, gemini, ollama"
        )
    return cls(config, params, transport=transport, on_progress=on_progress)


@dataclass
class PoolEntry:
    """A selected adapter and its position in the pool."""
    index: int
    adapter: BaseAdapter

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "id": self.adapter.config.id,
            "api_type": self.adapter.api_type,
            "model": self.adapter.model,
        }


class AdapterPool:

    def __init__(self, adapters: Optional[Iterable[BaseAdapter]] = None):
        self._adapters: list[BaseAdapter] = [a for a in (adapters or []) if a.config.enabled]
        self._cursor = 0

    @classmethod
    def from_configs(
        cls,
        configs: Iterable[AdapterConfig],
        params: Optional[GenerationParameters] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> AdapterPool:
        pool = cls()
        pool.rebuild(configs, params, transport, on_progress)
        return pool

    def __len__(self) -> int:
        return len(self._adapters)

    @property
    def adapters(self) -> list[BaseAdapter]:
        return list(self._adapters)

    # ── Selection ─────────────────────────────────────────────────

    def next(self) -> Optional[PoolEntry]:
        """Next adapter in round-robin order, or None when the pool is empty."""
        if not self._adapters:
            return None
        if self._cursor >= len(self._adapters):
            self._cursor = 0
        index = self._cursor
        self._cursor = (index + 1) % len(self._adapters)
        return PoolEntry(index, self._adapters[index])

    def by_id(self, adapter_id: str) -> Optional[PoolEntry]:
        """Look up an adapter without advancing the cursor."""
        for index, adapter in enumerate(self._adapters):
            if adapter.config.id == adapter_id:
                return PoolEntry(index, adapter)
        return None

    # ── Hot reconfiguration ───────────────────────────────────────

    def rebuild(
        self,
        configs: Iterable[AdapterConfig],
        params: Optional[GenerationParameters] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        """Replace every adapter from a fresh config list, skipping disabled ones.

        `on_progress` receives streamed text from adapters that stream.
        """
        adapters = [create_adapter(c, params, transport, on_progress) for c in configs if c.enabled]
        self._adapters = adapters
        self._cursor = 0
        logger.info(f"Adapter pool rebuilt with {len(adapters)} adapter(s)")
