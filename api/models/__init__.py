from .chat import ChatRequest, Message

__all__ = ["ChatRequest", "Message"]
