"""
Cloud Bulletin: regional cloud-cover forecast aggregation

Pulls hourly cloud-cover forecasts for a catalog of Indian sub-divisions from
several public weather APIs, ensembles them into one robust series per region,
and reduces that series to the categories shown on the daily bulletin.

Pipeline:
    regions.py       - Region catalog (sample points per sub-division)
    providers/       - Open-Meteo (per model), NASA POWER, OpenWeatherMap
    fetcher.py       - Concurrent fan-out with retry and failure isolation
    ensemble.py      - Mean across points, median across providers
    aggregation.py   - Solar-window daily means, 24h horizon halves, max-merge
    solar.py         - Clear-sky irradiance estimate and GHI source choice
    classifier.py    - Five-bucket classification with hysteresis
    bias.py          - EWMA bias learned from observations (SQLite)
    cache_manager.py - Last Known Good result cache + provider reliability
    scheduler.py     - 3-hour IST refresh loop

Entry Points:
    main.py --once        - Single refresh, writes outputs/bulletin_*.json
    main.py --forever     - Refresh every 3 hours on IST boundaries
"""

__version__ = "1.0.0"
__author__ = "Cloud Bulletin"
