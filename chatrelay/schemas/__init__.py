from .chat import ChatRequest, ModelInfo, ModelsResponse, RetryRequest

__all__ = ["ChatRequest", "ModelInfo", "ModelsResponse", "RetryRequest"]
