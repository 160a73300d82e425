"""Domain models, configuration, errors and debug plumbing."""
