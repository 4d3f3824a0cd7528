"""
Test suite for the consultation queue.

Contains unit and integration tests for the queue aggregate, its
persistence and the command API.
"""
import os

# Set environment for testing
os.environ["TESTING"] = "1"
