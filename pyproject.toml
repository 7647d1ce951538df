[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "spamkeeper"
version = "0.1.0"
description = "SQLite storage and housekeeping for a chat anti-spam bot: approved users, detected spam, dictionaries, database backups and spam logs"
requires-python = ">=3.10"
dependencies = []
keywords = ["spam", "chat", "anti-spam", "sqlite", "moderation", "backup"]
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
    "Topic :: Communications :: Chat",
    "Topic :: Database",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["spamkeeper"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 110
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
