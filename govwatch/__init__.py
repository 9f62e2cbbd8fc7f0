"""govwatch - governor limit monitoring, deployment correlation, and alerting."""

__version__ = "0.1.0"
