from .hls_proxy import (
    HlsProxyUseCase,
    PlaylistResult,
    ProxyFailure,
    SegmentResult,
)

__all__ = [
    "HlsProxyUseCase",
    "PlaylistResult",
    "ProxyFailure",
    "SegmentResult",
]
