[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "nodescope"
version = "0.1.0"
description = "Collect Linux host metrics from /proc and /sys and render them in the Prometheus text format"
requires-python = ">=3.10"
dependencies = []
keywords = ["metrics", "monitoring", "prometheus", "procfs", "sysfs", "linux", "exporter"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
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
packages = ["nodescope"]

[tool.pytest.ini_options]
addopts = "-ra"
