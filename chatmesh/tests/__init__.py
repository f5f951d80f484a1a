"""Test suite for the anonymous chat mesh."""
