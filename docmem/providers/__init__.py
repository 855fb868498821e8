"""Concrete adapters behind the interfaces in :mod:`docmem.interfaces`."""
