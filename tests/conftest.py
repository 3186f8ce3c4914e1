pytest_plugins = [
    "tests.fixtures.relay_fixtures",
    "tests.fixtures.backend_fixtures",
]
