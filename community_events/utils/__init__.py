"""Shared utilities: authentication, exceptions, logging and retry helpers."""
