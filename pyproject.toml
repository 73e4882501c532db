[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "vigilante"
version = "0.1.0"
description = "Building blocks for relaying BTC headers to a Babylon chain and monitoring it for liveness and consistency"
requires-python = ">=3.10"
dependencies = [
    "cryptography",
]
keywords = [
    "bitcoin",
    "babylon",
    "checkpoint",
    "monitoring",
    "liveness",
    "metrics",
    "relayer",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
    "Topic :: System :: Distributed Computing",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["vigilante"]

[tool.hatch.build.targets.sdist]
include = [
    "vigilante",
    "tests",
]

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
