"""Users app package.

Defines the custom user model with a role field that decides who may
administer resources and approve bookings. Use
``apps.users.models.CustomUser`` as the AUTH_USER_MODEL throughout the
project.
"""
