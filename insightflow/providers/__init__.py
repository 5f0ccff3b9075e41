"""Provider adapters: analytics backends and notification channels."""
