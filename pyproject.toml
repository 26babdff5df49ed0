[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "telemetrykit"
version = "0.1.0"
description = "Metrics aggregation, StatsD encoding, distributed tracing contexts and release-health sessions for application telemetry."
requires-python = ">=3.10"
dependencies = []
keywords = ["telemetry", "metrics", "statsd", "tracing", "spans", "sessions", "envelope"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries :: Python Modules",
    "Topic :: System :: Monitoring",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["telemetrykit"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
