"""Unit-test framework configuration."""

import libceed
import pytest


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--ceed",
        action="store",
        default="/cpu/self",
        help="libCEED resource used by the tests",
    )


@pytest.fixture(scope="session")
def ceed_resource(request: pytest.FixtureRequest) -> str:
    """libCEED resource selected on the command line."""
    return request.config.getoption("--ceed")


@pytest.fixture(scope="module")
def ceed(ceed_resource: str) -> libceed.Ceed:
    """libCEED context shared by the tests of a module."""
    return libceed.Ceed(ceed_resource)
