"""Cutroom: media asset versioning and editorial workflow service.

Do not add import-time side effects here; importing ``cutroom.models`` must not
pull in the FastAPI app or open a database connection.
"""
