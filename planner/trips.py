import math

import db


def fetch_trips_used(departure_date, connection=None):
    """Vehicle key -> plan units already committed for the departure date."""
    if not departure_date:
        return {}
    return db.count_trips_by_vehicle(departure_date, connection=connection)


class TripLedger:
    """Live trip counter for one commit, seeded from the committed snapshot."""

    def __init__(self, trips_used=None, cap=2):
        self.trips = dict(trips_used or {})
        self.cap = cap

    @classmethod
    def load(cls, departure_date, cap, connection=None):
        return cls(fetch_trips_used(departure_date, connection=connection), cap=cap)

    def used(self, key):
        return self.trips.get(key, 0)

    def has_slot(self, key):
        if math.isinf(self.cap):
            return True
        return self.used(key) < self.cap

    def claim(self, key):
        if not self.has_slot(key):
            return False
        self.trips[key] = self.used(key) + 1
        return True

    def snapshot(self):
        return dict(self.trips)
