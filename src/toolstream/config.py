"""Configuration shared by the orchestrator, the HTTP adapters and the CLI."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Mapping

from .core.message import Vendor, VendorMode

DEFAULT_MODELS: Mapping[Vendor, str] = {
    Vendor.ANTHROPIC: "claude-sonnet-4-20250514",
    Vendor.OPENAI: "gpt-5",
}
DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."
DEFAULT_ANTHROPIC_BASE_URL = "https://api.anthropic.com/v1"
DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_ANTHROPIC_VERSION = "2023-06-01"

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(slots=True)
class OrchestratorConfig:
    """Settings for one :class:`~toolstream.runtime.loop.Orchestrator`.

    Attributes
    ----------
    vendor_mode:
        Provider plus tool-execution mode. Client modes run tools locally,
        ``anthropic-server-mcp`` lets the provider call the MCP server itself.
    model:
        Provider model identifier.
    system_prompt:
        Sent outside the message list on every request.
    max_tokens, temperature:
        Sampling parameters forwarded in each session payload.
    max_iterations:
        Hard ceiling on model round trips within one exchange.
    tool_cache_ttl:
        Seconds a tool listing stays valid in the :class:`ToolCatalog`.
    parallel_tool_calls:
        Dispatch the calls of one iteration concurrently.
    """

    vendor_mode: VendorMode
    model: str
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    max_tokens: int = 1024
    temperature: float = 0.7
    max_iterations: int = 20
    tool_cache_ttl: float = 300.0
    parallel_tool_calls: bool = True

    def __post_init__(self) -> None:
        self.vendor_mode = VendorMode(self.vendor_mode)
        if not self.model.strip():
            raise ValueError("model must not be empty")
        if self.max_tokens <= 0:
            raise ValueError("max_tokens must be positive")
        if not 0.0 <= self.temperature <= 2.0:
            raise ValueError("temperature must be between 0 and 2")
        if self.max_iterations <= 0:
            raise ValueError("max_iterations must be positive")
        if self.tool_cache_ttl < 0:
            raise ValueError("tool_cache_ttl must be non-negative")

    @property
    def vendor(self) -> Vendor:
        return self.vendor_mode.vendor

    @classmethod
    def from_mode(cls, mode: VendorMode | str, **overrides: Any) -> "OrchestratorConfig":
        """Build a config for ``mode``, picking the vendor's default model.

        Parameters
        ----------
        mode:
            A :class:`VendorMode` or its string value.
        overrides:
            Any other field; ``None`` values are ignored so CLI namespaces can
            be passed through directly.
        """

        try:
            vendor_mode = VendorMode(mode)
        except ValueError as exc:
            raise ValueError(f"unknown vendor mode '{mode}'") from exc

        values = {key: value for key, value in overrides.items() if value is not None}
        values.setdefault("model", DEFAULT_MODELS[vendor_mode.vendor])
        return cls(vendor_mode=vendor_mode, **values)


@dataclass(slots=True)
class TransportConfig:
    """Credentials and endpoints for the HTTP transport and MCP runtime."""

    anthropic_api_key: str | None = None
    openai_api_key: str | None = None
    anthropic_base_url: str = DEFAULT_ANTHROPIC_BASE_URL
    openai_base_url: str = DEFAULT_OPENAI_BASE_URL
    anthropic_version: str = DEFAULT_ANTHROPIC_VERSION
    mcp_url: str | None = None
    timeout: float = 60.0

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        self.anthropic_base_url = self.anthropic_base_url.rstrip("/")
        self.openai_base_url = self.openai_base_url.rstrip("/")
        if self.mcp_url is not None:
            self.mcp_url = self.mcp_url.rstrip("/") or None

    def api_key(self, vendor: Vendor) -> str | None:
        if vendor is Vendor.ANTHROPIC:
            return self.anthropic_api_key
        return self.openai_api_key

    def base_url(self, vendor: Vendor) -> str:
        if vendor is Vendor.ANTHROPIC:
            return self.anthropic_base_url
        return self.openai_base_url

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "TransportConfig":
        env = os.environ if environ is None else environ
        timeout = env.get("TOOLSTREAM_TIMEOUT")
        return cls(
            anthropic_api_key=env.get("ANTHROPIC_API_KEY") or None,
            openai_api_key=env.get("OPENAI_API_KEY") or None,
            anthropic_base_url=env.get("ANTHROPIC_BASE_URL") or DEFAULT_ANTHROPIC_BASE_URL,
            openai_base_url=env.get("OPENAI_BASE_URL") or DEFAULT_OPENAI_BASE_URL,
            anthropic_version=env.get("ANTHROPIC_VERSION") or DEFAULT_ANTHROPIC_VERSION,
            mcp_url=env.get("MCP_URL") or None,
            timeout=float(timeout) if timeout else 60.0,
        )


def debug_enabled(environ: Mapping[str, str] | None = None) -> bool:
    env = os.environ if environ is None else environ
    return env.get("TOOLSTREAM_DEBUG", "").strip().lower() in _TRUE_VALUES
