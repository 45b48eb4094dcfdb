"""
Taxonomy enums shared by models, repositories and the monitoring tasks.

Modules:
    roster_taxonomy — guild/player types and vocation normalization.
    death_taxonomy  — PVP/PVE classification and notification kinds.

These modules have NO imports from any other ``guild_monitor`` package.
"""
