"""
Shared kernel of the booking service: domain base classes, the error
taxonomy, the unit of work, the event bus and the DRF glue that renders
domain errors.
"""
