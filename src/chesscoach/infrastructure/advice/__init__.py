from .http_client import HttpAdviceClient

__all__ = ["HttpAdviceClient"]
