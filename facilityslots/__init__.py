"""
facilityslots - facility availability and timeslot computation.
"""

__version__ = "0.1.0"
