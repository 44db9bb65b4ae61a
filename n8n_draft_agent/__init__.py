"""n8n draft agent: natural-language requests to reviewed, deployed n8n workflows."""

__version__ = "0.1.0"
