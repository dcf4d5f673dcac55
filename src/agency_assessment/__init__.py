"""
Federal AI assessment service.

Provides:
- FastAPI endpoints that stream model output for evaluation, roadmap and
  architecture-assessment tasks, plus a synchronous scoring endpoint
- An httpx client for the hosted generation API (streaming and blocking)
- A client library and CLI that decode the streamed metadata trailer
"""
