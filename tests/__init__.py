"""Tests for gke-deploy."""
