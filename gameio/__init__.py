"""Blocking, polling, threads and a cooperative event loop, side by side.

The core (`task`, `scheduler`, `connection`, `threaded`, `frame_loop`) is kept free of
FastAPI and Redis so it can be used from scripts, the API, and tests alike.
"""
