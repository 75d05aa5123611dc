"""Render k6 scripts for scenarios from a marker-based template."""

from __future__ import annotations

from importlib import resources
from pathlib import Path
from typing import Any
import json
import re

from .errors import TemplateError
from .models import Scenario, TestCase

SCENARIOS_MARKER = "__SCENARIOS_OBJECT__"
THRESHOLDS_MARKER = "__THRESHOLDS_OBJECT__"
FUNCTIONS_MARKER = "__INJECTED_TEST_FUNCTIONS__"
REQUIRED_MARKERS = (SCENARIOS_MARKER, THRESHOLDS_MARKER, FUNCTIONS_MARKER)
_MARKER_PATTERN = re.compile("|".join(re.escape(marker) for marker in REQUIRED_MARKERS))

DEFAULT_EXECUTOR: dict[str, Any] = {
    "executor": "per-vu-iterations",
    "vus": 1,
    "iterations": 1,
}
STEP_PAUSE_SECONDS = 1

_STEP_FUNCTION = """\
function {function}(vars) {{
  k6group({group_name}, function () {{
    const url = withQuery(replacePlaceholders({url}, vars), replacePlaceholders({query}, vars));
    const body = replacePlaceholders({body}, vars);
    const headers = Object.assign({{ "Content-Type": "application/json" }}, replacePlaceholders({headers}, vars));
    const res = k6http.request({method}, url, encodeBody(body), {{ headers: headers, tags: {tags} }});
    applyChecks(res, {checks}, {group_name});
    applyExtract(res, {extract}, vars);
  }});
}}
"""


class ScriptSynthesizer:
    """Fills the template with one scenario's executor, thresholds and steps.

    The runtime helpers the steps call (imports included) are injected together
    with the step functions, so a custom template only has to provide the three
    markers.
    """

    def __init__(self, template: str, *, strict_checks: bool = False) -> None:
        missing = [marker for marker in REQUIRED_MARKERS if marker not in template]
        if missing:
            raise TemplateError(f"k6 script template is missing placeholder(s): {', '.join(missing)}")
        self.template = template
        self.strict_checks = strict_checks
        self.helpers = _packaged_template("helpers.k6.js").rstrip("\n") + "\n"

    @classmethod
    def default(cls, *, strict_checks: bool = False) -> "ScriptSynthesizer":
        return cls(_packaged_template("default.k6.js"), strict_checks=strict_checks)

    @classmethod
    def from_path(cls, path: Path, *, strict_checks: bool = False) -> "ScriptSynthesizer":
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise TemplateError(f"Cannot read k6 script template {path}: {exc}") from exc
        return cls(text, strict_checks=strict_checks)

    def render(self, scenario: Scenario) -> str:
        slug = scenario.slug
        replacements = {
            SCENARIOS_MARKER: _to_js(self.scenarios_object(scenario), indent=2),
            THRESHOLDS_MARKER: _to_js(self.thresholds_object(scenario), indent=2),
            FUNCTIONS_MARKER: self._functions(scenario, slug),
        }
        # Single pass, so marker-like text inside injected data is left alone.
        return _MARKER_PATTERN.sub(lambda match: replacements[match.group(0)], self.template)

    @staticmethod
    def scenarios_object(scenario: Scenario) -> dict[str, Any]:
        executor = scenario.executor_options or DEFAULT_EXECUTOR
        return {scenario.slug: {**executor, "exec": scenario.slug}}

    def thresholds_object(self, scenario: Scenario) -> dict[str, list[str]]:
        thresholds = dict(scenario.thresholds or {})
        if self.strict_checks and "checks" not in thresholds and _has_checks(scenario):
            thresholds["checks"] = ["rate==1"]
        return thresholds

    def _functions(self, scenario: Scenario, slug: str) -> str:
        blocks = []
        calls = []
        for number, step in enumerate(scenario.steps, start=1):
            function = f"step_{number}_{slug}"
            blocks.append(_step_function(function, step))
            calls.append(f"  {function}(vars);")
            calls.append(f"  k6sleep({STEP_PAUSE_SECONDS});")
        entry = "\n".join(
            [
                f"// scenario: {_comment_safe(scenario.name)}",
                f"export function {slug}() {{",
                "  const vars = {};",
                *calls,
                "}",
            ]
        )
        return "\n".join([self.helpers, *blocks, entry]) + "\n"


def _step_function(function: str, step: TestCase) -> str:
    return _STEP_FUNCTION.format(
        function=function,
        group_name=_to_js(step.test_name),
        url=_to_js(step.url),
        query=_to_js(step.query_params),
        body=_to_js(step.body),
        headers=_to_js(step.headers or {}),
        method=_to_js(step.method),
        tags=_to_js(step.tags or {}),
        checks=_to_js([check.model_dump() for check in step.checks or ()]),
        extract=_to_js([rule.model_dump() for rule in step.extract or ()]),
    )


def _packaged_template(name: str) -> str:
    return resources.files("k6_runner").joinpath(f"templates/{name}").read_text(encoding="utf-8")


def _has_checks(scenario: Scenario) -> bool:
    return any(step.checks for step in scenario.steps)


def _to_js(value: Any, indent: int | None = None) -> str:
    # JSON literals are valid JavaScript expressions.
    return json.dumps(value, indent=indent)


def _comment_safe(text: str) -> str:
    return text.replace("\n", " ").replace("\r", " ")
