"""Utilities package for cure-tracker application."""
