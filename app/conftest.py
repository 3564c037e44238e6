"""
Pytest configuration for the bill verifier test suite.

Provides the fixture bill texts from ``fixtures/`` and a rule matcher over
the shipped FY2025/26 tariff data. pyproject.toml puts ``app/`` on the
import path, so tests import modules by their bare names.

Run everything:
    pytest
"""
import os

import pytest

from rule_matcher import RuleMatcher
from tariff_repository import InMemoryAlertSink, InMemoryRuleRepository

FIXTURES_DIR = os.path.join(os.path.dirname(__file__), "fixtures")


def _read_fixture(name: str) -> str:
    with open(os.path.join(FIXTURES_DIR, name), encoding="utf-8") as f:
        return f.read()


@pytest.fixture(scope="session")
def residential_text() -> str:
    return _read_fixture("residential_bill.txt")


@pytest.fixture(scope="session")
def commercial_text() -> str:
    return _read_fixture("commercial_bill.txt")


@pytest.fixture(scope="session")
def repository() -> InMemoryRuleRepository:
    return InMemoryRuleRepository.from_default_data()


@pytest.fixture
def alert_sink() -> InMemoryAlertSink:
    return InMemoryAlertSink()


@pytest.fixture
def matcher(repository, alert_sink) -> RuleMatcher:
    return RuleMatcher(repository, alert_sink=alert_sink)
