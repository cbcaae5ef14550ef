"""Reliability — bounded retries with backoff policies."""
