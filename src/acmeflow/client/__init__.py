"""ACME client layer: wire structs, transport, polling and default collaborators."""
