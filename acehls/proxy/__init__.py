"""HLS proxy for AceStream sessions

Relays engine manifests and segments to browsers:
- Manifest fetch with segment URL rewriting to this service
- Binary segment passthrough with CORS headers
- Direct engine stream redirects for native players
"""

from .hls_proxy import HLSProxy, ProxiedContent, rewrite_manifest

__all__ = ["HLSProxy", "ProxiedContent", "rewrite_manifest"]
