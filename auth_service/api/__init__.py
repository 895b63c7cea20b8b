"""HTTP layer: routes and the error envelope."""
