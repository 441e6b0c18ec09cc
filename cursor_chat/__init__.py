"""cursor-chat: run the cursor-agent CLI as a resumable chat session."""

__version__ = "0.1.0"
