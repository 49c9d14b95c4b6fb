[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ddnskit"
version = "0.1.0"
description = "Building blocks for a dynamic DNS updater: IP detection, DNS record setting, monitors and notifications"
requires-python = ">=3.11"
keywords = ["ddns", "dns", "dynamic-dns", "ip-detection", "healthchecks", "uptime-kuma", "doh"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Name Service (DNS)",
    "Topic :: System :: Networking",
    "Topic :: System :: Monitoring",
]
dependencies = [
    "dnspython",
    "psutil",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["ddnskit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
