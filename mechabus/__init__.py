"""Mechabus — gateway between actuator controllers and real-time subscribers.

Quickstart::

    from mechabus.config import GatewayConfig
    from mechabus.server import create_app

    app = create_app(GatewayConfig.load("config.json").apply_env())
"""

__version__ = "1.0.0"
