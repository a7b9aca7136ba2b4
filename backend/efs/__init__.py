"""Application package for the Educational Facilitation System backend.

This package exposes the service, repository and model modules used by
the FastAPI application. The timetable subsystem (weekday conversions,
session aggregation, projection and the selection store) lives in
`efs.utils` and has no web or database dependencies.
"""
