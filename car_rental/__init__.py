"""
Car Rental API
==============
Booking platform for a small rental fleet: cars, customers and rentals
behind a JSON API, plus static pages for browsing and booking.
"""

__version__ = "1.0.0"
