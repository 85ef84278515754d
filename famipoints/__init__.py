"""
famipoints service layer.

Authentication and data services for a family points tracker, each with
an embedded-store (SQLAlchemy) and a remote REST variant selected by
configuration, plus a FastAPI server implementing the REST contract.
"""
