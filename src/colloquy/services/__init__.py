"""Host-side services: settings persistence."""
