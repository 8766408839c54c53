"""Chat Gateway - rate limiting and hands-free audio mode for the chat widget"""

__version__ = "1.0.0"
