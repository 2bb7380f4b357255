"""Built-in chat channels."""
