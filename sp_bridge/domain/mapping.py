"""Channel mapping table: Discord channel id to streamer DID.

Built once at startup from ``CHANNEL_MAPPINGS`` and never reloaded.
"""

from types import MappingProxyType
from typing import Dict, Iterable, Optional, Tuple

from sp_bridge.errors import ConfigError

# "=" separates the pair because DIDs contain colons (did:web:my.ball)
_PAIR_SEP = ","
_KV_SEP = "="


class MappingTable:
    """Immutable lookup from source channel id to destination account id."""

    def __init__(self, pairs: Iterable[Tuple[str, str]]):
        table: Dict[str, str] = {}
        for source, dest in pairs:
            source = (source or "").strip()
            dest = (dest or "").strip()
            if not source or not dest:
                raise ConfigError(f"empty id in channel mapping {source!r}={dest!r}")
            if source in table:
                raise ConfigError(f"duplicate source channel in mapping: {source}")
            table[source] = dest
        self._table = MappingProxyType(table)

    @classmethod
    def parse(cls, mapping_str: str) -> "MappingTable":
        """Parse ``"id=did[,id=did...]"``. Raises ConfigError if malformed."""
        pairs = []
        for chunk in (mapping_str or "").split(_PAIR_SEP):
            if not chunk.strip():
                continue
            parts = chunk.split(_KV_SEP)
            if len(parts) != 2:
                raise ConfigError(f"malformed channel mapping entry: {chunk.strip()!r}")
            pairs.append((parts[0], parts[1]))
        if not pairs:
            raise ConfigError("channel mapping is empty")
        return cls(pairs)

    def resolve(self, source_channel_id: str) -> Optional[str]:
        return self._table.get(source_channel_id)

    @property
    def source_channel_ids(self) -> Tuple[str, ...]:
        return tuple(self._table)

    def __contains__(self, source_channel_id: object) -> bool:
        return source_channel_id in self._table

    def __len__(self) -> int:
        return len(self._table)

    def __repr__(self) -> str:
        return f"MappingTable({dict(self._table)!r})"
