"""Messages API front for a chat-completions backend."""

__version__ = "0.1.0"
