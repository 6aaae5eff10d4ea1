"""Loopback web receiver for redirect callbacks."""
