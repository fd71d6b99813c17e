"""In-memory inbox for inbound SMS delivered by provider webhooks."""

__version__ = "1.0.0"
