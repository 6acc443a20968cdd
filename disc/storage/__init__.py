"""Persistence layer.

Handlers depend on the `Storage` protocol only; the Postgres implementation is the
system of record. Postgres drivers are imported lazily inside functions.
"""

from __future__ import annotations
