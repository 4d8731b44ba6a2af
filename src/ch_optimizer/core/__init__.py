"""Configuration, logging and database connection plumbing."""
