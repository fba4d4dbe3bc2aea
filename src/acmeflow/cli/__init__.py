"""acmeflow command-line interface."""
