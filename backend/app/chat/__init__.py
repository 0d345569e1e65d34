"""Conversation layer: intent, location, session state and replies."""
