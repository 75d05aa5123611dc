from __future__ import annotations

from structlog.testing import capture_logs

from k6_runner.grouping import group_scenarios, unresolved_variables
from k6_runner.normalizers import normalize_row


def _case(index: int, **values):
    row = {"method": "GET", "url": "http://localhost:3333/public/crocodiles/", "testName": f"step {index}"}
    row.update(values)
    return normalize_row(row, index)


def test_groups_preserve_first_seen_and_row_order(logger) -> None:
    cases = [
        _case(1, scenario="auth", testName="login"),
        _case(2, scenario="browse", testName="list"),
        _case(3, scenario="auth", testName="profile"),
        _case(4, testName="standalone"),
    ]

    scenarios = group_scenarios(cases, logger=logger)

    assert [scenario.name for scenario in scenarios] == ["auth", "browse", "standalone"]
    assert [step.test_name for step in scenarios[0].steps] == ["login", "profile"]


def test_unscoped_cases_with_same_name_stay_separate(logger) -> None:
    cases = [_case(1, testName="ping"), _case(2, testName="ping")]

    scenarios = group_scenarios(cases, logger=logger)

    assert len(scenarios) == 2
    assert all(len(scenario.steps) == 1 for scenario in scenarios)


def test_only_first_step_configuration_applies(logger) -> None:
    cases = [
        _case(1, scenario="load", thresholds='{"http_req_failed": ["rate<0.01"]}'),
        _case(2, scenario="load", thresholds='{"http_req_failed": ["rate<0.5"]}'),
        _case(3, scenario="load", thresholds='{"http_req_failed": ["rate<0.01"]}'),
    ]

    with capture_logs() as logs:
        scenarios = group_scenarios(cases, logger=logger)

    scenario = scenarios[0]
    assert scenario.thresholds == {"http_req_failed": ["rate<0.01"]}
    assert len(scenario.config_warnings) == 1
    assert "step 2" in scenario.config_warnings[0]
    assert [entry["event"] for entry in logs].count("scenario_config_ignored") == 1


def test_slug_strips_unsafe_characters(logger) -> None:
    scenarios = group_scenarios(
        [_case(1, scenario="Auth flow: v2!"), _case(2, scenario="2fa")],
        logger=logger,
    )

    assert scenarios[0].slug == "Authflowv2"
    assert scenarios[1].slug == "scenario_2fa"


def test_unresolved_variables_reports_references_before_extraction(logger) -> None:
    cases = [
        _case(1, scenario="auth", headers='{"Authorization": "Bearer {{authToken}}"}'),
        _case(2, scenario="auth", extract='[{"variable": "authToken", "path": "access"}]'),
        _case(
            3,
            scenario="auth",
            url="http://localhost:3333/my/crocodiles/{{authToken}}",
            body='{"id": "{{$randomInt(1,10)}}"}',
            method="POST",
        ),
    ]

    scenario = group_scenarios(cases, logger=logger)[0]
    problems = unresolved_variables(scenario)

    assert len(problems) == 1
    assert "step 1" in problems[0]
    assert "{{authToken}}" in problems[0]
