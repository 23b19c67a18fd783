"""Domain modules for the China Unicom usage bot."""
