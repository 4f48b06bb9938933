"""
API Routes
"""
from soukhya.api import diseases, genetic_care, patients

__all__ = ['diseases', 'genetic_care', 'patients']
