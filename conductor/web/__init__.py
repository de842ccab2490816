"""HTTP surface: aiohttp routes for turns, auth and the data stores."""
