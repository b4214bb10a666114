"""Domain layer - playback, sessions, listens and the backend client."""
