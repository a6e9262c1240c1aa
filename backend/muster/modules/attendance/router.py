"""Attendance module router aggregation."""
from muster.routers import attendance, orbat_attendance, users

ROUTERS = [attendance.router, orbat_attendance.router, users.router]
