"""Trade lifecycle, escrow coordination and dispute resolution for a B2B marketplace."""

__version__ = "0.1.0"
