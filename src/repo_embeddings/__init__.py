"""
Repository embeddings service.

Turns GitLab change events into stored code embeddings and serves
similarity search over them.
"""

__version__ = "0.1.0"
