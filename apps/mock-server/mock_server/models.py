"""Pydantic models describing mock server configuration."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class MockMatcher(BaseModel):
    """Criteria an incoming request must satisfy for a route to answer it."""

    method: str | None = None
    path: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    body: dict[str, Any] | None = None


class MockResponse(BaseModel):
    """Static response payload returned by the mock server."""

    status: int = 200
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = Field(default_factory=dict)
    latency_ms: int = 0


class MockRoute(BaseModel):
    """Single mocked endpoint; routes are tried in declaration order."""

    operation: str
    description: str = ""
    matcher: MockMatcher
    response: MockResponse


class MockServer(BaseModel):
    """Server instance definition with bind host and port (0 picks a free port)."""

    name: str
    host: str = "127.0.0.1"
    port: int = 3333
    routes: list[MockRoute] = Field(default_factory=list)


class MockConfig(BaseModel):
    """Top-level configuration consumed by the mock runtime."""

    service: str
    servers: list[MockServer] = Field(default_factory=list)
