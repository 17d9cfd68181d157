"""
Business logic of the stats, event and gateway applications.

Endpoints stay thin; everything that touches the database, the service
registry or another service over HTTP lives here.
"""
