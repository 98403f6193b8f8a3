"""Cloud Cafe ordering and rewards API."""
