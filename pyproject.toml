[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "metricchute"
version = "0.1.0"
description = "Metric pipeline building blocks: receivers accept data, handlers parse it, senders pass it on."
requires-python = ">=3.10"
dependencies = []
keywords = ["metrics", "telemetry", "monitoring", "pipeline", "receiver", "sender", "batching", "backoff"]
classifiers = [
    "Development Status :: 4 - Beta",
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
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["metricchute"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]
