"""Studyline daily task rescheduling service."""
