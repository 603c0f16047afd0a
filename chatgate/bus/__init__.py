"""Message bus: inbound events and their queue."""
