"""Community Events API: events, accounts and attendee registration."""

__version__ = "1.0.0"
