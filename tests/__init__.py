"""Tests for Conductor."""
