"""dns-syncer: keep DNS provider records in line with a declarative config."""

__version__ = "0.1.0"
