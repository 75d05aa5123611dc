"""Loading mock configurations and the built-in demo API."""

from __future__ import annotations

from pathlib import Path
import json

import yaml

from .models import MockConfig, MockMatcher, MockResponse, MockRoute, MockServer

DEMO_TOKEN = "mock-auth-token-12345"
DEMO_USERNAME = "testuser"
DEMO_PASSWORD = "password"


def load_config(path: Path) -> MockConfig:
    """Load and validate a mock configuration YAML or JSON file."""

    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        data = json.loads(text)
    else:
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ValueError(f"Mock config file {path} is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"Mock config file {path} must contain a mapping")
    return MockConfig.model_validate(data)


def default_config(host: str = "127.0.0.1", port: int = 3333) -> MockConfig:
    """Crocodile demo API: a login that issues a token and a protected listing."""

    json_headers = {"Content-Type": "application/json"}
    routes = [
        MockRoute(
            operation="login",
            description="Valid credentials return an access token",
            matcher=MockMatcher(
                method="POST",
                path="/auth/token/login/",
                body={"username": DEMO_USERNAME, "password": DEMO_PASSWORD},
            ),
            response=MockResponse(
                headers=json_headers,
                body={"access": DEMO_TOKEN, "refresh": "mock-refresh-token"},
            ),
        ),
        MockRoute(
            operation="loginRejected",
            description="Any other credentials",
            matcher=MockMatcher(method="POST", path="/auth/token/login/"),
            response=MockResponse(status=401, headers=json_headers, body={"error": "Invalid credentials"}),
        ),
        MockRoute(
            operation="listMyCrocodiles",
            description="Protected listing for the authenticated user",
            matcher=MockMatcher(
                method="GET",
                path="/my/crocodiles/",
                headers={"Authorization": f"Bearer {DEMO_TOKEN}"},
            ),
            response=MockResponse(
                headers=json_headers,
                body=[{"id": 1, "name": "Lyle (Protected)", "sex": "M"}],
            ),
        ),
        MockRoute(
            operation="listMyCrocodilesUnauthorized",
            description="Protected listing without a valid token",
            matcher=MockMatcher(method="GET", path="/my/crocodiles/"),
            response=MockResponse(
                status=401,
                headers=json_headers,
                body={"error": "Authentication credentials were not provided."},
            ),
        ),
        MockRoute(
            operation="listPublicCrocodiles",
            description="Public listing",
            matcher=MockMatcher(method="GET", path="/public/crocodiles/"),
            response=MockResponse(
                headers=json_headers,
                body=[
                    {"id": 1, "name": "Mock Bert", "sex": "M"},
                    {"id": 2, "name": "Mock Alice", "sex": "F"},
                ],
            ),
        ),
    ]
    return MockConfig(
        service="crocodiles-demo",
        servers=[MockServer(name="crocodiles", host=host, port=port, routes=routes)],
    )
