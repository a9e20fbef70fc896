"""Strata command line interface."""
