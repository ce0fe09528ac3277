[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "aiocanopen"
version = "0.1.0"
description = "Low-level asynchronous CANopen client: NMT, SYNC, SDO transfers and PDO configuration"
requires-python = ">=3.10"
dependencies = []
keywords = ["CANopen", "CAN", "CANbus", "fieldbus", "SDO", "PDO", "NMT", "asyncio", "SocketCAN"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Framework :: AsyncIO",
    "Intended Audience :: Developers",
    "Intended Audience :: Manufacturing",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Embedded Systems :: Controller Area Network (CAN) :: CANopen",
    "Topic :: System :: Networking",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[project.scripts]
aiocanopen = "aiocanopen.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["aiocanopen"]

[tool.hatch.build.targets.sdist]
include = ["aiocanopen", "tests", "README.md", "pyproject.toml"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
strict = true
files = ["aiocanopen"]
