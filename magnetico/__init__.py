"""Storage back ends, metrics and info-hash types for DHT-discovered torrents."""

__version__ = "0.1.0"