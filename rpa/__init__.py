"""M-Pin relying party front end."""
