"""Configuration, logging and the HTTP calling layer."""
