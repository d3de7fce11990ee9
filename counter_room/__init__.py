"""
Counter room app.

This app contains:
- A Channels consumer for `/ws/`
- The room coordinator: identity assignment, serialized mutations, roster fan-out
- A heartbeat that reaps connections which stop answering probes
"""
