"""
Tumor Board Evaluation Backend

Serves resolved patient cases with AI-generated cancer-therapy
recommendations and stores the ratings medical professionals give them.
"""

__version__ = "1.0.0"
