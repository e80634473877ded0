"""Real-time change streams for the Pressroom publishing platform."""

__version__ = "0.4.0"
