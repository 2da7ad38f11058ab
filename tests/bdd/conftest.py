"""
Shared fixtures and step definitions for BDD tests.

- runner, mock_sync, mock_logistics, context: available to all scenario files
- no_logging: autouse, prevents log file creation and pins the zone to UTC
- 'the output contains' / 'does not contain' steps: shared across feature files
"""

import pytest
from unittest.mock import patch
from zoneinfo import ZoneInfo
from click.testing import CliRunner
from pytest_bdd import then, parsers


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def mock_sync():
    with patch("showsync.cli.main.schedule_sync") as mock:
        yield mock


@pytest.fixture
def mock_logistics():
    with patch("showsync.cli.main.logistics") as mock:
        mock.list_flights.return_value = []
        mock.get_show_people.return_value = []
        yield mock


@pytest.fixture
def context():
    """Mutable dict shared between Given/When/Then steps within a scenario."""
    return {}


@pytest.fixture(autouse=True)
def no_logging():
    with patch("showsync.cli.main.configure_logging"), \
         patch("showsync.cli.main.get_timezone", return_value=ZoneInfo("UTC")):
        yield


@then(parsers.parse('the output contains "{text}"'))
def output_contains(context, text):
    assert text in context["result"].output, (
        f"Expected {text!r} in output:\n{context['result'].output}"
    )


@then(parsers.parse('the output does not contain "{text}"'))
def output_lacks(context, text):
    assert text not in context["result"].output, (
        f"Did not expect {text!r} in output:\n{context['result'].output}"
    )
