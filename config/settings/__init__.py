"""Settings package for the resource booking project.

`base.py` contains common configuration shared across environments. The
`dev.py`, `prod.py` and `test.py` modules extend the base settings with
environment specific overrides.
"""
