"""Conductor: agent loop, credential and memory core for a desktop-shell assistant."""
