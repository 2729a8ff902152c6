"""Command line utilities for the KAT mobile offline core."""
