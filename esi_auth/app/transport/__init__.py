from .builder import AuthenticatedRequestBuilder

__all__ = ["AuthenticatedRequestBuilder"]
