"""sshai-client: natural-language aware remote shell client."""

__version__ = "0.1.0"
