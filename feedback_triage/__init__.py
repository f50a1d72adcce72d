"""Feedback Triage Engine: classification, deduplication and prioritization of user feedback."""
