"""AT Protocol adapter: PDS sessions and record creation."""

from sp_bridge.adapters.atproto.client import AtprotoClient, classify_error, token_expiry

__all__ = ["AtprotoClient", "classify_error", "token_expiry"]
