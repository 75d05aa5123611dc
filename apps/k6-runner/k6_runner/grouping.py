"""Group validated test cases into sequential scenarios."""

from __future__ import annotations

from typing import Any, Iterable
import json
import re

import structlog

from .models import Scenario, TestCase

SCENARIO_LEVEL_FIELDS = ("thresholds", "executor_options")
_FIELD_LABELS = {"thresholds": "thresholds", "executor_options": "executorOptions"}

# {{name}} references; {{$randomInt(a,b)}} is a built-in and never matches.
VARIABLE_PATTERN = re.compile(r"\{\{(\w+)\}\}")


def group_scenarios(
    cases: Iterable[TestCase],
    *,
    logger: structlog.stdlib.BoundLogger,
) -> list[Scenario]:
    """Partition cases by ``scenario`` key, preserving first-seen and row order.

    Cases without a scenario key become singleton scenarios named after their
    testName. Only the first step's thresholds/executorOptions apply; differing
    values on later steps are reported and ignored.
    """

    buckets: dict[Any, list[TestCase]] = {}
    names: dict[Any, str] = {}
    for position, case in enumerate(cases):
        key: Any = ("scenario", case.scenario) if case.scenario else ("single", position)
        if key not in buckets:
            buckets[key] = []
            names[key] = case.scenario or case.test_name
        buckets[key].append(case)

    scenarios = []
    for key, steps in buckets.items():
        name = names[key]
        warnings = _ignored_config(name, steps)
        for message in warnings:
            logger.warning("scenario_config_ignored", scenario=name, detail=message)
        scenarios.append(Scenario(name=name, steps=tuple(steps), config_warnings=tuple(warnings)))

    logger.info("scenarios_grouped", scenarios=len(scenarios))
    return scenarios


def _ignored_config(name: str, steps: list[TestCase]) -> list[str]:
    first = steps[0]
    messages = []
    for step_number, step in enumerate(steps[1:], start=2):
        for attribute in SCENARIO_LEVEL_FIELDS:
            value = getattr(step, attribute)
            if value is None or value == getattr(first, attribute):
                continue
            messages.append(
                f"scenario '{name}' step {step_number} ('{step.test_name}') sets "
                f"{_FIELD_LABELS[attribute]} that differ from step 1; only step 1's value is used"
            )
    return messages


def unresolved_variables(scenario: Scenario) -> list[str]:
    """Describe ``{{variable}}`` references no earlier step of the scenario extracts."""

    known: set[str] = set()
    problems = []
    for step_number, step in enumerate(scenario.steps, start=1):
        referenced = _references(step)
        for variable in sorted(referenced - known):
            problems.append(
                f"scenario '{scenario.name}' step {step_number} ('{step.test_name}') "
                f"references {{{{{variable}}}}} before any step extracts it; it resolves to an empty string"
            )
        for rule in step.extract or ():
            known.add(rule.variable)
    return problems


def _references(step: TestCase) -> set[str]:
    text = json.dumps([step.url, step.query_params, step.headers, step.body])
    return set(VARIABLE_PATTERN.findall(text))
