"""Chat session client and speech collaborators."""
