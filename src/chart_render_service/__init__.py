"""
Chart render service: HTTP in, rendered chart image out.

- App factory + HTTP frontend: `api/`
- Per-request state machine: `pipeline/`
- Render channel to the surface: `bus.py`
- Rendering surfaces (subprocess / thread): `surface/`
- Chart families: `components/`
"""

__version__ = "0.1.0"
