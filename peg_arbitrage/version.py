"""Version information for the peg arbitrage bot."""

__version__ = "0.3.0"

# Sent to relays so operators can tell bot builds apart
USER_AGENT = f"peg-arbitrage/{__version__}"


def get_version() -> str:
    """Get the current version string."""
    return __version__
