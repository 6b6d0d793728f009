from __future__ import annotations

from .origin_guard import OriginGuard

__all__ = ["OriginGuard"]
