"""Long-lived services owned by the ServicesManager."""
