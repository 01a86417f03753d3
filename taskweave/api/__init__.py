"""HTTP API for taskweave."""
