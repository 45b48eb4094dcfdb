"""
Game-data API access.

Modules:
    records          — frozen response records (characters, deaths, rosters, guilds).
    cache            — in-memory TTL cache owned by the client.
    rate_limit       — shared rate-limit state and the request gate.
    game_data_client — the async TibiaData v4 client.
    batch            — bounded-concurrency character fan-out.
"""
