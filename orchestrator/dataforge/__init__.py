"""DataForge - managed PostgreSQL and Redis instances on Kubernetes."""

__version__ = "0.1.0"
