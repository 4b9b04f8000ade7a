"""HTTP API for triggering ticks, managing states and manual entries."""
