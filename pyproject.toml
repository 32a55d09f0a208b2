[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "mockbitcoind"
version = "0.1.0"
description = "An in-process mock Bitcoin Core JSON-RPC server for integration tests"
requires-python = ">=3.10"
dependencies = []
keywords = ["bitcoin", "json-rpc", "mock", "testing", "regtest"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Software Development :: Testing :: Mocking",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["mockbitcoind"]

[tool.pytest.ini_options]
addopts = "-ra"
