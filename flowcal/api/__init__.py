"""aiohttp HTTP surface for flowcal."""
