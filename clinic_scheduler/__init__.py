"""
Clinic Scheduling Engine

A FastAPI-based service that turns doctors' weekly availability into bookable
slots, allocates patient appointments to those slots under concurrent access,
and enforces the appointment lifecycle.
"""

__version__ = "1.0.0"
