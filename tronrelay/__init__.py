"""OCR2 relayer components for the Tron network: configuration, balance monitoring,
contract readers, polling caches, config digests, report transmission and service providers."""

__version__ = "0.1.0"