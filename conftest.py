import pytest


def pytest_addoption(parser):
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests marked as live (fetch from the real catalog site).",
    )


def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        "live: tests that make real HTTP requests to the catalog site"
    )


def pytest_collection_modifyitems(config, items):
    if config.getoption("--run-live"):
        return

    skip_live = pytest.mark.skip(reason="live network test (use --run-live to run)")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)
