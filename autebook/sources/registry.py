from __future__ import annotations

from typing import List, Type, Union

from ..config_loader import config
from ..errors import UnsupportedSource
from .base import ExternalUpdater, WebnovelSource
from .fanficfare import FanFicFare
from .royalroad import RoyalRoad

Source = Union[WebnovelSource, ExternalUpdater]


def _candidates() -> List[Type[Source]]:
    # Native sources first, the external tool only as a fallback
    candidates: List[Type[Source]] = [RoyalRoad]
    if config.get("sources.fanficfare", False):
        candidates.append(FanFicFare)
    return candidates


def get_source(url: str) -> Source:
    for source_class in _candidates():
        if source_class.matches(url):
            return source_class()
    raise UnsupportedSource(f"No source supports {url}")
