"""Local mock HTTP API for exercising generated k6 scripts."""
