"""
Application package for the chat relay.

This package contains:
- settings: configuration loaded from the environment / .env
- logging_config: shared logging setup
- deps: FastAPI dependencies (DB session, HTTP client factory, provider registry)
- upstream: OpenAI-compatible SSE streaming helpers
- provider: model catalog and SDK drivers
- services: credentials, quota, context assembly and the relay orchestrator
- routes: FastAPI app factory
"""
