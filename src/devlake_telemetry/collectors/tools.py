"""Detect running developer tools from a single process-table snapshot."""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Iterator

import psutil

from ..signatures import SignatureCatalog

logger = logging.getLogger(__name__)

ProcessIter = Callable[..., Iterator[psutil.Process]]


def process_descriptions(process_iter: ProcessIter = psutil.process_iter) -> list[str]:
    """Return ``"<name> <executable>"`` for every visible process.

    Arguments past the executable are never read.
    """

    descriptions: list[str] = []
    for proc in process_iter(["name", "cmdline"]):
        info = getattr(proc, "info", {}) or {}
        name = info.get("name") or ""
        cmdline = info.get("cmdline") or []
        executable = cmdline[0] if cmdline else ""
        text = f"{name} {executable}".strip()
        if text:
            descriptions.append(text)
    return descriptions


def match_tools(catalog: SignatureCatalog, descriptions: Iterable[str]) -> list[str]:
    snapshot = list(descriptions)
    return sorted(
        tool.name for tool in catalog.tools if any(tool.matches(text) for text in snapshot)
    )


class ToolDetector:
    """Match the process table against the catalog's tool signatures."""

    def __init__(self, catalog: SignatureCatalog, *, process_iter: ProcessIter = psutil.process_iter) -> None:
        self._catalog = catalog
        self._process_iter = process_iter

    def detect(self) -> list[str]:
        try:
            descriptions = process_descriptions(self._process_iter)
        except (psutil.Error, OSError) as exc:
            logger.debug("Process table unavailable: %s", exc)
            return []
        return match_tools(self._catalog, descriptions)


__all__ = ["ToolDetector", "match_tools", "process_descriptions"]
