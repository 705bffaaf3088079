"""Call event handling for placed calls."""
