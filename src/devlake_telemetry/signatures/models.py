"""Signature models for tool, service and activity detection."""

from __future__ import annotations

import re
from functools import cached_property
from typing import Any

from pydantic import BaseModel, Field, field_validator


def _compile_all(patterns: list[str]) -> list[re.Pattern[str]]:
    return [re.compile(pattern, re.IGNORECASE) for pattern in patterns]


def _validate_patterns(patterns: list[str]) -> list[str]:
    for pattern in patterns:
        try:
            re.compile(pattern)
        except re.error as exc:
            raise ValueError(f"Invalid pattern {pattern!r}: {exc}") from exc
    return patterns


class ToolSignature(BaseModel):
    """A developer tool recognised from the process table."""

    name: str = Field(..., description="Tool name reported in telemetry.")
    patterns: list[str] = Field(
        ..., min_length=1, description="Case-insensitive regexes matched against process names."
    )

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Tool signature name must not be empty")
        return normalized

    @field_validator("patterns")
    @classmethod
    def _check_patterns(cls, value: list[str]) -> list[str]:
        return _validate_patterns(value)

    @cached_property
    def compiled(self) -> list[re.Pattern[str]]:
        return _compile_all(self.patterns)

    def matches(self, text: str) -> bool:
        return any(pattern.search(text) for pattern in self.compiled)


class ServiceDomain(BaseModel):
    """A known remote service identified by its domains."""

    name: str
    domains: list[str] = Field(..., min_length=1)

    @field_validator("domains")
    @classmethod
    def _normalize_domains(cls, value: list[str]) -> list[str]:
        normalized = [domain.strip().lower().strip(".") for domain in value if domain.strip()]
        if not normalized:
            raise ValueError("Service domains must not be empty")
        return normalized

    def matching_domain(self, hostname: str) -> str | None:
        """Return the longest of this service's domains that ``hostname`` falls under."""

        host = hostname.lower().rstrip(".")
        matched = [domain for domain in self.domains if host == domain or host.endswith("." + domain)]
        return max(matched, key=len) if matched else None


class ActivityPatterns(BaseModel):
    """Command patterns that identify test runs and builds."""

    test: list[str] = Field(default_factory=list)
    build: list[str] = Field(default_factory=list)

    @field_validator("test", "build", mode="before")
    @classmethod
    def _ensure_list(cls, value: Any):
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return list(value)
        raise TypeError("Activity patterns must be sequences of regexes")

    @field_validator("test", "build")
    @classmethod
    def _check_patterns(cls, value: list[str]) -> list[str]:
        return _validate_patterns(value)


class SignatureCatalog(BaseModel):
    """Everything the collectors need to classify processes, hosts and commands."""

    tools: list[ToolSignature] = Field(default_factory=list)
    services: list[ServiceDomain] = Field(default_factory=list)
    activity: ActivityPatterns = Field(default_factory=ActivityPatterns)

    def tool_names(self) -> list[str]:
        return [tool.name for tool in self.tools]

    def restrict_tools(self, names: list[str] | None) -> "SignatureCatalog":
        """Return a catalog limited to ``names``; ``None`` keeps every tool."""

        if names is None:
            return self
        wanted = {name.strip().lower() for name in names}
        return self.model_copy(
            update={"tools": [tool for tool in self.tools if tool.name.lower() in wanted]}
        )

    def classify_host(self, hostname: str) -> str | None:
        # Longest domain wins so api.github.com is not claimed by a broader suffix.
        best: tuple[int, str] | None = None
        for service in self.services:
            domain = service.matching_domain(hostname)
            if domain is not None and (best is None or len(domain) > best[0]):
                best = (len(domain), service.name)
        return best[1] if best else None


__all__ = ["ActivityPatterns", "ServiceDomain", "SignatureCatalog", "ToolSignature"]
