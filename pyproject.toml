[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "dote"
version = "0.1.0"
description = "Building blocks for a DNS over TLS forwarder: DNS packet handling, configuration, event loop, TLS connections and forwarder management"
requires-python = ">=3.10"
dependencies = []
keywords = ["dns", "dns-over-tls", "dot", "forwarder", "edns", "padding", "tls"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Name Service (DNS)",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["dote"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 88
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
