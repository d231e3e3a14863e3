"""Graph Layout Backend - HTTP and WebSocket surface over a LayoutSession."""
