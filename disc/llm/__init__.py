"""LLM-backed helpers (recommendations, review sentiment).

Provider SDKs are imported lazily so the API can start without them installed.
"""

from __future__ import annotations
