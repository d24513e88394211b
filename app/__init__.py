"""Recomp release manager application package."""
