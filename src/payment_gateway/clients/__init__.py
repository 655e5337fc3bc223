"""HTTP clients for vendor REST APIs."""
