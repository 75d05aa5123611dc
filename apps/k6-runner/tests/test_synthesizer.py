from __future__ import annotations

import json
import re
import shutil
import subprocess
from importlib import resources
from pathlib import Path

import pytest

from k6_runner.errors import TemplateError
from k6_runner.grouping import group_scenarios
from k6_runner.normalizers import normalize_row
from k6_runner.synthesizer import DEFAULT_EXECUTOR, ScriptSynthesizer


def _scenario(logger, *rows):
    cases = [normalize_row({"method": "GET", "url": "http://localhost:3333/", **row}, index) for index, row in enumerate(rows, 1)]
    return group_scenarios(cases, logger=logger)[0]


def test_template_without_markers_is_rejected() -> None:
    with pytest.raises(TemplateError) as excinfo:
        ScriptSynthesizer("export const options = { scenarios: __SCENARIOS_OBJECT__ };")

    assert "__THRESHOLDS_OBJECT__" in str(excinfo.value)
    assert "__INJECTED_TEST_FUNCTIONS__" in str(excinfo.value)


def test_unreadable_template_path_is_template_error(tmp_path: Path) -> None:
    with pytest.raises(TemplateError):
        ScriptSynthesizer.from_path(tmp_path / "missing.js")


def test_default_executor_and_entry_function(logger) -> None:
    scenario = _scenario(logger, {"scenario": "smoke", "testName": "ping"})
    synthesizer = ScriptSynthesizer.default()

    script = synthesizer.render(scenario)

    assert synthesizer.scenarios_object(scenario) == {"smoke": {**DEFAULT_EXECUTOR, "exec": "smoke"}}
    assert "__SCENARIOS_OBJECT__" not in script
    assert "__INJECTED_TEST_FUNCTIONS__" not in script
    assert "export function smoke() {" in script
    assert "function step_1_smoke(vars)" in script
    assert '"exec": "smoke"' in script
    assert "thresholds: {}" in script


def test_steps_are_rendered_in_order_with_first_step_config(logger) -> None:
    scenario = _scenario(
        logger,
        {
            "scenario": "auth",
            "testName": "login",
            "method": "POST",
            "thresholds": '{"http_req_duration": ["p(95)<500"]}',
            "executorOptions": '{"executor": "constant-vus", "vus": 3, "duration": "10s", "exec": "other"}',
        },
        {"scenario": "auth", "testName": "profile"},
    )

    script = ScriptSynthesizer.default().render(scenario)

    assert script.index("step_1_auth(vars);") < script.index("step_2_auth(vars);")
    assert '"p(95)<500"' in script
    assert ScriptSynthesizer.scenarios_object(scenario)["auth"] == {
        "executor": "constant-vus",
        "vus": 3,
        "duration": "10s",
        "exec": "auth",
    }


def test_strict_checks_add_rate_threshold(logger) -> None:
    scenario = _scenario(logger, {"scenario": "s", "checks": '[{"type": "statusCode", "expected": 200}]'})

    assert ScriptSynthesizer.default(strict_checks=True).thresholds_object(scenario) == {"checks": ["rate==1"]}
    assert ScriptSynthesizer.default().thresholds_object(scenario) == {}


def test_marker_text_inside_data_is_not_substituted(logger) -> None:
    scenario = _scenario(logger, {"scenario": "s", "method": "POST", "body": "__THRESHOLDS_OBJECT__"})

    script = ScriptSynthesizer.default().render(scenario)

    assert 'replacePlaceholders("__THRESHOLDS_OBJECT__", vars)' in script


CUSTOM_TEMPLATE = (
    "// custom\n"
    "export const options = { scenarios: __SCENARIOS_OBJECT__, thresholds: __THRESHOLDS_OBJECT__ };\n"
    "__INJECTED_TEST_FUNCTIONS__\n"
)
LOGIN_STEP = {
    "scenario": "s",
    "testName": "login",
    "method": "POST",
    "body": '{"id": "{{$randomInt(1,1)}}"}',
    "checks": '[{"type": "statusCode", "expected": 200}]',
    "extract": '[{"variable": "authToken", "path": "access"}]',
}
PROFILE_STEP = {
    "scenario": "s",
    "testName": "profile",
    "queryParams": '{"page": 2}',
    "headers": '{"Authorization": "Bearer {{authToken}}"}',
}


def _custom_script(tmp_path: Path, logger) -> str:
    template = tmp_path / "custom.js"
    template.write_text(CUSTOM_TEMPLATE, encoding="utf-8")
    return ScriptSynthesizer.from_path(template).render(_scenario(logger, LOGIN_STEP, PROFILE_STEP))


def test_custom_template_gets_every_helper_its_steps_call(tmp_path: Path, logger) -> None:
    script = _custom_script(tmp_path, logger)

    steps = script[script.index("function step_1_s(vars)") : script.index("export function s()")]
    called = set(re.findall(r"(?<![\w.])([A-Za-z_]\w*)\(", steps)) - {"function"}
    imported = set(re.findall(r"\bas (\w+)", script)) | set(re.findall(r"^import (\w+) from", script, re.M))
    undefined = sorted(name for name in called if name not in imported and f"function {name}(" not in script)

    assert script.startswith("// custom\n")
    assert {"withQuery", "replacePlaceholders", "encodeBody", "applyChecks", "applyExtract"} <= called
    assert undefined == []


def test_placeholders_are_passed_to_runtime_substitution(tmp_path: Path, logger) -> None:
    script = _custom_script(tmp_path, logger)
    helpers = _helpers()

    assert 'replacePlaceholders({"id": "{{$randomInt(1,1)}}"}, vars)' in script
    assert 'replacePlaceholders({"Authorization": "Bearer {{authToken}}"}, vars)' in script
    assert 'replacePlaceholders({"page": 2}, vars)' in script
    assert r'/"\{\{\$randomInt\((-?\d+)\s*,\s*(-?\d+)\)\}\}"/g' in helpers
    assert 'if (value === null || value === undefined) return "";' in helpers
    assert "JSON.stringify(asText(vars[name]))" in helpers


def _helpers() -> str:
    text = resources.files("k6_runner").joinpath("templates/helpers.k6.js").read_text(encoding="utf-8")
    start = text.index("// --- helpers:start ---")
    end = text.index("// --- helpers:end ---")
    return text[start:end]


K6_STUBS = """\
const requests = [];
const k6http = {
  request: (method, url, body, params) => {
    requests.push({ method, url, body, authorization: params.headers.Authorization || null });
    return { status: 200, body: '{"access": "tok"}', json: () => ({ access: "tok" }) };
  },
};
const k6check = (res, sets) => Object.values(sets).every((fn) => fn());
const k6fail = (message) => {
  throw new Error(message);
};
const k6group = (name, fn) => fn();
const k6sleep = () => {};
"""


@pytest.mark.skipif(shutil.which("node") is None, reason="node is not installed")
def test_custom_template_script_runs(tmp_path: Path, logger) -> None:
    script = _custom_script(tmp_path, logger)
    body = re.sub(r"^export ", "", re.sub(r"^import .*$", "", script, flags=re.M), flags=re.M)
    program = K6_STUBS + body + "\ns();\nconsole.log(JSON.stringify(requests));\n"

    completed = subprocess.run(["node", "-e", program], capture_output=True, text=True, timeout=30)

    assert completed.returncode == 0, completed.stderr
    login, profile = json.loads(completed.stdout)
    assert (login["method"], json.loads(login["body"])) == ("POST", {"id": 1})
    assert profile["url"] == "http://localhost:3333/?page=2"
    assert profile["authorization"] == "Bearer tok"


@pytest.mark.skipif(shutil.which("node") is None, reason="node is not installed")
def test_placeholder_helpers_substitute_values() -> None:
    program = _helpers() + "\n".join(
        [
            "const vars = { authToken: 'abc\"123', count: 5 };",
            "console.log(JSON.stringify([",
            "  replacePlaceholders({ id: '{{$randomInt(1,1)}}', page: 'p{{$randomInt(2,2)}}' }, vars),",
            "  replacePlaceholders('Bearer {{authToken}}', vars),",
            "  replacePlaceholders('{{missing}}', vars),",
            "  replacePlaceholders({ n: '{{count}}' }, vars),",
            "  withQuery('http://x/a', { q: 'a b', page: 2 }),",
            "]));",
        ]
    )

    completed = subprocess.run(["node", "-e", program], capture_output=True, text=True, timeout=30, check=True)
    random_values, bearer, missing, counted, url = json.loads(completed.stdout)

    assert random_values == {"id": 1, "page": "p2"}
    assert bearer == 'Bearer abc"123'
    assert missing == ""
    assert counted == {"n": "5"}
    assert url == "http://x/a?q=a%20b&page=2"
