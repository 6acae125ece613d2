"""Session keys for gateway conversations.

Format: ``agent:{agent_id}:{prefix}-{memory_id}``

The agent id selects which gateway agent answers, the memory id selects
which remembered conversation it continues. Calls that derive the same key
share context on the peer, so the output must stay byte-stable.
"""

from __future__ import annotations

from .config import DEFAULT_AGENT, DEFAULT_SESSION_PREFIX

DEFAULT_MEMORY_SUFFIX = "default"


def derive_session_key(
    memory_id: str | None = None,
    agent_id: str | None = None,
    *,
    default_agent: str = DEFAULT_AGENT,
    prefix: str = DEFAULT_SESSION_PREFIX,
) -> str:
    agent = default_agent if agent_id is None else agent_id
    suffix = DEFAULT_MEMORY_SUFFIX if memory_id is None else memory_id
    return f"agent:{agent}:{prefix}-{suffix}"


__all__ = ["DEFAULT_MEMORY_SUFFIX", "derive_session_key"]
