"""Migration units, one module per unit, each exposing a module-level `unit`.

Modules are named ``v<identifier>_<slug>.py``; order comes from the unit's
identifier, not from the file name.
"""
