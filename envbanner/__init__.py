"""
envbanner — Environment Banner Proxy
=====================================

A transparent reverse proxy that marks every HTML page it serves with a
small corner ribbon naming the environment (e.g. "Production"), so
operators always know which system they are looking at.

  • Single static upstream, every method and path forwarded
  • Streaming HTML rewrite: banner spliced in right after ``<body>``
  • Non-HTML payloads pass through untouched and unbuffered
"""

__version__ = "1.0.0"
__app_name__ = "envbanner"
