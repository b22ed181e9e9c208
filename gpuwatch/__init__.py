"""GPUWatch: GPU retail price tracking, deal scoring and alerting."""

__version__ = "0.1.0"
