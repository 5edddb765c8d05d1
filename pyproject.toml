[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "auroralinux"
version = "0.2.0"
description = "Linux telemetry providers (auditd, kernel tracing, replay) and log formatters for Sigma-based detection"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "security",
    "sigma",
    "auditd",
    "ebpf",
    "telemetry",
    "detection",
    "siem",
    "syslog",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Information Technology",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Security",
    "Topic :: System :: Logging",
    "Topic :: System :: Monitoring",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["auroralinux"]

[tool.hatch.build.targets.sdist]
include = ["auroralinux", "tests", "README.md"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
