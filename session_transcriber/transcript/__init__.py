"""Transcript assembly."""
