[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "magnetico"
version = "0.1.0"
description = "Storage back ends for torrent metadata discovered on the BitTorrent DHT: SQLite, PostgreSQL, RabbitMQ, ZeroMQ and bitmagnet"
requires-python = ">=3.10"
keywords = ["bittorrent", "dht", "torrent", "infohash", "sqlite", "postgresql", "rabbitmq", "zeromq", "prometheus"]
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
    "Topic :: Database",
    "Topic :: Communications :: File Sharing",
    "Topic :: System :: Monitoring",
]
dependencies = [
    "pika",
    "pyzmq",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["magnetico"]

[tool.hatch.build.targets.sdist]
include = ["magnetico", "tests"]

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
warn_unused_ignores = true
ignore_missing_imports = true
