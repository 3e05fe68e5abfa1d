"""A gRPC notification hub that routes messages to clients by id and metadata conditions."""

__version__ = "0.1.0"

__all__ = ["client", "conditions", "metadata", "registry", "service"]