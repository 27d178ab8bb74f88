"""Voice capture and consent orchestrator for Discord voice channels."""
