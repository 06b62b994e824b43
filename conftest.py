# conftest.py
import pytest

pytest_plugins = ["pytester"]


def pytest_addoption(parser):
    parser.addoption(
        "--run-optional",
        action="store_true",
        default=False,
        help="Run tests marked as optional (slow end-to-end runs of the CLI)",
    )


def pytest_collection_modifyitems(config, items):
    if config.getoption("--run-optional"):
        return

    skip_marker = pytest.mark.skip(reason="Optional test, use --run-optional to include")
    for item in items:
        if "optional" in item.keywords:
            item.add_marker(skip_marker)
