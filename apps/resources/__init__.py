"""Resources app package.

Bookable resources (rooms, equipment) with a capacity and an active flag,
plus the registry that hands them to the booking core under a lock.
"""
