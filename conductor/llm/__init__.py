"""Turn execution against the upstream model: prompts, protocols and streaming."""
