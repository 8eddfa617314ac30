"""Personalized air quality alert cache and notification scheduler."""
