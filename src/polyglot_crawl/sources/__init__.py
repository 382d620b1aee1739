"""Concrete sources: how to walk and read one site's page tree."""
