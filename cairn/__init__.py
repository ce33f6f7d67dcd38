"""cairn: an interactive command-line AI coding assistant."""
