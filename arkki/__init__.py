"""arkki: local backups driven by a small per-profile configuration."""

__version__ = "0.1.0"
