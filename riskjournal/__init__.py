"""
riskjournal
-----------

Trading journal and position-size calculator. The pure domain modules
(risk, calculator, positions, analytics) can be used without the Flask
service in :mod:`riskjournal.app`.
"""

__version__ = "0.1.0"
