"""
Consultation Queue

Live, per-doctor patient queues for virtual and walk-in consultations:
queue ordering, doctor availability, queue position, wait estimates and
consultation state transitions.
"""

__version__ = "1.0.0"
