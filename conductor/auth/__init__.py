"""Upstream credentials: OAuth PKCE sign-in and static API keys."""
