"""Tests for phasegate."""
