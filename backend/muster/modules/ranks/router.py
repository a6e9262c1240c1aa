"""Rank progression module router aggregation."""
from muster.routers import admin_users, bot, ranks, trainings

ROUTERS = [ranks.router, bot.router, admin_users.router, trainings.router]
