"""
Authentication helpers for the Disc API.

Design goals:
- Local username/password accounts plus Spotify OAuth (login and account linking).
- Server-side sessions referenced by a signed, HttpOnly cookie.
- Authorization enforced per route via FastAPI dependencies.
"""
