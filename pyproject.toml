[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "servicehub"
version = "0.1.0"
description = "Share global services between clusters through a central hub server"
requires-python = ">=3.10"
keywords = ["service discovery", "multi-cluster", "global service", "edge", "http api"]
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
    "Topic :: System :: Distributed Computing",
]
dependencies = [
    "requests",
    "werkzeug",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[project.scripts]
service-hub = "servicehub.options:main"

[tool.hatch.build.targets.wheel]
packages = ["servicehub"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
