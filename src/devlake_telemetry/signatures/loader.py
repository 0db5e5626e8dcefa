"""Utilities for loading signature catalogs from YAML."""

from __future__ import annotations

from importlib import resources
from pathlib import Path
from typing import Any, Iterable

import yaml
from pydantic import ValidationError

from .models import ActivityPatterns, SignatureCatalog

DEFAULT_CATALOG = "default.yml"


class SignatureLoadError(RuntimeError):
    """Raised when a signature catalog fails to load or validate."""


def _parse_document(text: str, origin: str) -> SignatureCatalog | None:
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise SignatureLoadError(f"Failed to parse YAML in {origin}: {exc}") from exc

    if document is None:
        return None

    try:
        return SignatureCatalog.model_validate(document)
    except ValidationError as exc:
        raise SignatureLoadError(f"Signature validation error in {origin}: {exc}") from exc


def load_default_catalog() -> SignatureCatalog:
    """Return the catalog bundled with the package."""

    text = resources.files(__package__).joinpath(DEFAULT_CATALOG).read_text(encoding="utf-8")
    return _parse_document(text, DEFAULT_CATALOG) or SignatureCatalog()


def merge_catalogs(base: SignatureCatalog, override: SignatureCatalog) -> SignatureCatalog:
    """Overlay ``override`` on ``base``.

    Tools and services with the same name are replaced; activity patterns are
    appended without duplicates.
    """

    tools = {tool.name: tool for tool in base.tools}
    tools.update({tool.name: tool for tool in override.tools})
    services = {service.name: service for service in base.services}
    services.update({service.name: service for service in override.services})

    def _extend(first: list[str], second: list[str]) -> list[str]:
        return first + [pattern for pattern in second if pattern not in first]

    activity = ActivityPatterns(
        test=_extend(base.activity.test, override.activity.test),
        build=_extend(base.activity.build, override.activity.build),
    )
    return SignatureCatalog(tools=list(tools.values()), services=list(services.values()), activity=activity)


class SignatureLoader:
    """Load the bundled catalog and overlay YAML files from search paths."""

    def __init__(self, search_paths: Iterable[Path] | None = None, *, include_default: bool = True) -> None:
        paths = [Path(path) for path in (search_paths or [])]
        self._search_paths: list[Path] = [path for path in paths if path.exists()]
        self._include_default = include_default

    @property
    def search_paths(self) -> list[Path]:
        """Return the normalized search paths."""

        return list(self._search_paths)

    def load(self) -> SignatureCatalog:
        """Load and merge every catalog.

        Later search paths override earlier ones when tool or service names collide.
        """

        catalog = load_default_catalog() if self._include_default else SignatureCatalog()
        errors: list[str] = []

        for base in self._search_paths:
            for path in sorted(base.glob("*.yml")) + sorted(base.glob("*.yaml")):
                try:
                    overlay = _parse_document(path.read_text(encoding="utf-8"), str(path))
                except SignatureLoadError as exc:
                    errors.append(str(exc))
                    continue
                if overlay is not None:
                    catalog = merge_catalogs(catalog, overlay)

        if errors:
            raise SignatureLoadError("; ".join(errors))

        return catalog


def load_catalog(
    search_paths: Iterable[Path] | None = None,
    *,
    developer_tools: list[str] | None = None,
) -> SignatureCatalog:
    """Convenience wrapper returning the merged catalog, optionally restricted to some tools."""

    loader = SignatureLoader(search_paths)
    return loader.load().restrict_tools(developer_tools)


def dump_catalog(catalog: SignatureCatalog) -> dict[str, Any]:
    return catalog.model_dump(mode="json")


__all__ = [
    "SignatureLoadError",
    "SignatureLoader",
    "dump_catalog",
    "load_catalog",
    "load_default_catalog",
    "merge_catalogs",
]
