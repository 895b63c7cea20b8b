"""Account aggregate, contracts, errors and the orchestrating service."""
