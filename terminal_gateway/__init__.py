"""
Terminal Gateway

Authentication gateway for a web terminal backend. Verifies callers through a
pluggable identity provider, keeps a time-bounded server-side session and
forwards authenticated HTTP and WebSocket traffic to the backend with an
identity header.
"""

__version__ = "1.0.0"
