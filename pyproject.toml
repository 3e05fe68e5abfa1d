[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "noticehub"
version = "0.1.0"
description = "A gRPC notification hub that routes messages to clients selected by id and by metadata conditions"
requires-python = ">=3.10"
dependencies = [
    "grpcio",
]
keywords = ["notification", "grpc", "push", "messaging", "conditions", "metadata"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["noticehub"]

[tool.hatch.build.targets.sdist]
include = ["noticehub", "tests"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
