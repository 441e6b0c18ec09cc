"""Models, formatters and services shared by the engine and the console host."""
