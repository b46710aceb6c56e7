"""Command line tool for gke-deploy."""
